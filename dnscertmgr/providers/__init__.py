#!/usr/bin/env python
# -*- coding: utf-8 -*-

# providers - dns provider package
# Copyright (c) The dnscertmgr Authors, 2026.
# available under the ISC license, see LICENSE

import importlib
import json

DEFAULT_PROVIDER = "nsupdate"

dns_providers = dict()


# @brief find or create a dns provider for the given settings
# @param settings the certificate's configuration options
def dns_provider(settings):
    key = json.dumps(settings, sort_keys=True)
    if key in dns_providers:
        return dns_providers[key]
    else:
        mode = settings.get("mode", DEFAULT_PROVIDER)
        provider_module = importlib.import_module("dnscertmgr.providers.{0}".format(mode))
        provider_class = getattr(provider_module, "DNSProvider")
        provider_obj = provider_class(settings)
        dns_providers[key] = provider_obj
        return provider_obj
