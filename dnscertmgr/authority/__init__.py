#!/usr/bin/env python
# -*- coding: utf-8 -*-

# authority - authority api package
# Copyright (c) The dnscertmgr Authors, 2026.
# available under the ISC license, see LICENSE

import json

from dnscertmgr.authority.v2 import ACMEAuthority

CA_LETSENCRYPT = "letsencrypt"
CA_LETSENCRYPT_STAGING = "letsencrypt_staging"

# Root authority key identifiers usable as root_ca_key_id
LETSENCRYPT_ROOT_KEY_ID_ISRG_ROOT_X1 = "79:B4:59:E6:7B:B6:E5:E4:01:73:80:08:88:C8:1A:58:F6:E9:9B:6E"
LETSENCRYPT_ROOT_KEY_ID_DST_ROOT_CA_X3 = "C4:A7:B1:A4:7B:2C:71:FA:DB:E1:4B:90:75:FF:C4:15:60:85:89:10"
LETSENCRYPT_STAGING_ROOT_KEY_ID_FAKE_LE_ROOT_X1 = "C1:26:74:A4:8A:44:A0:E6:FA:20:28:D8:5C:23:9A:45:88:18:79:E0"
LETSENCRYPT_STAGING_ROOT_KEY_ID_FAKE_LE_ROOT_X2 = "1B:FB:1C:F0:31:7D:03:2B:DA:0A:9B:AF:78:A6:F6:99:91:19:9C:B2"

KNOWN_AUTHORITIES = {
    CA_LETSENCRYPT: "https://acme-v02.api.letsencrypt.org/directory",
    CA_LETSENCRYPT_STAGING: "https://acme-staging-v02.api.letsencrypt.org/directory",
}

authorities = dict()


# @brief map an authority name (or a directory url) to its directory url
def directory_url(name):
    if name in KNOWN_AUTHORITIES:
        return KNOWN_AUTHORITIES[name]
    if name.startswith('https://') or name.startswith('http://'):
        return name
    raise ValueError("Unknown authority '{0}', known authorities: {1}".format(
        name, ', '.join(sorted(KNOWN_AUTHORITIES))))


# @brief find or create a suitable authority for the given settings
# @param settings the authority configuration options
# @param dns the default dns provider used to publish challenge records
def authority(settings, dns=None):
    key = json.dumps(settings, sort_keys=True)
    if key in authorities:
        return authorities[key]
    config = dict(settings)
    config['directory_url'] = directory_url(settings['authority'])
    authority_obj = ACMEAuthority(config, dns)
    authorities[key] = authority_obj
    return authority_obj
