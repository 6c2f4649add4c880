#!/usr/bin/env python
# -*- coding: utf-8 -*-

# config - dnscertmgr config parser
# Copyright (c) The dnscertmgr Authors, 2026.
# available under the ISC license, see LICENSE

import argparse
import copy
import hashlib
import io
import json
import os

from dnscertmgr.authority import CA_LETSENCRYPT, CA_LETSENCRYPT_STAGING
from dnscertmgr.authority.v2 import DNS_SETTLE_DELAY, POLL_INTERVAL, POLL_MAX_ATTEMPTS
from dnscertmgr.providers import DEFAULT_PROVIDER
from dnscertmgr.tools import idna_convert

# Configuration defaults to use if not specified otherwise
DEFAULT_CONF_DIR = "/etc/dnscertmgr"
DEFAULT_CONF_FILENAME = "dnscertmgr.conf"
DEFAULT_TTL = 30  # days
DEFAULT_AUTHORITY = CA_LETSENCRYPT


# @brief update config[name] with value from localconfig>globalconfig>default
def update_config_value(config, name, localconfig, globalconfig, default):
    values = [x[name] for x in localconfig if name in x]
    if len(values) > 0:
        config[name] = values[0]
    else:
        config[name] = globalconfig.get(name, default)


# @brief parse authority from config
def parse_authority(localconfig, globalconfig, runtimeconfig):
    authority = {}
    # - Certificate authority (known name or directory url)
    update_config_value(authority, 'authority', localconfig, globalconfig,
                        CA_LETSENCRYPT_STAGING if runtimeconfig.get('staging') else DEFAULT_AUTHORITY)

    # - Certificate authority ToS agreement
    update_config_value(authority, 'authority_tos_agreement', localconfig, globalconfig,
                        runtimeconfig['authority_tos_agreement'])
    authority['authority_tos_agreement'] = str(authority['authority_tos_agreement']).lower() == 'true'

    # - Certificate authority contact email addresses
    update_config_value(authority, 'authority_contact_email', localconfig, globalconfig, None)

    # - Account key path
    update_config_value(authority, 'account_key', localconfig, globalconfig,
                        os.path.join(runtimeconfig['work_dir'], "account.key"))

    # - Account url (adopt the account without registering it again if set)
    update_config_value(authority, 'account_url', localconfig, globalconfig, None)

    # - Validation timing (seconds, converted to numbers)
    update_config_value(authority, 'dns_settle_delay', localconfig, globalconfig, DNS_SETTLE_DELAY)
    authority['dns_settle_delay'] = float(authority['dns_settle_delay'])
    update_config_value(authority, 'poll_interval', localconfig, globalconfig, POLL_INTERVAL)
    authority['poll_interval'] = float(authority['poll_interval'])
    update_config_value(authority, 'poll_max_attempts', localconfig, globalconfig, POLL_MAX_ATTEMPTS)
    authority['poll_max_attempts'] = int(authority['poll_max_attempts'])

    # - Whether to include request for OCSP must-staple in the certificate
    update_config_value(authority, 'cert_must_staple', localconfig, globalconfig, "false")

    return authority


# @brief parse dns provider options (global config overridden by the first local entry with a mode)
def parse_dns_provider(localconfig, globalconfig):
    cfg = copy.deepcopy(globalconfig)
    cfg.pop('defaults', None)
    providerconfigs = [x for x in localconfig if 'mode' in x]
    if len(providerconfigs) > 0:
        cfg.update(providerconfigs[0])
    if 'mode' not in cfg:
        cfg['mode'] = DEFAULT_PROVIDER
    return cfg


# @brief parse a single certificate configuration entry
def parse_config_entry(entry, globalconfig, runtimeconfig):
    config = dict()

    # Basic domain information
    domains, localconfig = entry
    if isinstance(localconfig, dict):
        localconfig = [localconfig]
    config['domainlist'] = domains.split(' ')
    config['id'] = hashlib.md5(domains.encode('utf-8')).hexdigest()

    # Convert unicode to IDNA domains
    config['domaintranslation'] = idna_convert(config['domainlist'])
    if len(config['domaintranslation']) > 0:
        config['domainlist'] = [x for x, _ in config['domaintranslation']]

    # Authority related config options
    config['authority'] = parse_authority(localconfig, globalconfig, runtimeconfig)

    # DNS provider options
    config['dns'] = parse_dns_provider(localconfig, globalconfig)

    # Record name to publish all challenges at (for validation delegated by CNAME)
    update_config_value(config, 'dns_cname', localconfig, globalconfig, None)

    # Root authority key identifier the certificate chain has to end in
    update_config_value(config, 'root_ca_key_id', localconfig, globalconfig, None)

    # Certificate directory
    update_config_value(config, 'cert_dir', localconfig, globalconfig, runtimeconfig['work_dir'])

    # TTL days
    update_config_value(config, 'ttl_days', localconfig, globalconfig, DEFAULT_TTL)
    config['ttl_days'] = int(config['ttl_days'])

    # Output file locations
    update_config_value(config, 'cert_file', localconfig, globalconfig,
                        os.path.join(config['cert_dir'], "{}.crt".format(config['id'])))
    update_config_value(config, 'key_file', localconfig, globalconfig,
                        os.path.join(config['cert_dir'], "{}.key".format(config['id'])))
    update_config_value(config, 'ca_file', localconfig, globalconfig,
                        os.path.join(config['cert_dir'], "{}.ca".format(config['id'])))
    update_config_value(config, 'fullchain_file', localconfig, globalconfig,
                        os.path.join(config['cert_dir'], "{}.fullchain.crt".format(config['id'])))

    return config


# @brief read a JSON config file, falling back to YAML
def read_config_file(path):
    with io.open(path) as config_fd:
        try:
            return json.load(config_fd)
        except ValueError:
            import yaml
            config_fd.seek(0)
            return yaml.safe_load(config_fd)


# @brief parse the command line
def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="dnscertmgr - DNS validated certificate manager using ACME")
    parser.add_argument("-c", "--config-file", nargs="?",
                        help="global configuration file (default='$config_dir/{}')".format(DEFAULT_CONF_FILENAME))
    parser.add_argument("-d", "--config-dir", nargs="?",
                        help="certificate configuration directory (default='{}')".format(DEFAULT_CONF_DIR))
    parser.add_argument("-w", "--work-dir", nargs="?",
                        help="persistent work data directory (default='$config_dir')")
    parser.add_argument("--authority-tos-agreement", "--tos-agreement", "--tos", nargs="?",
                        help="Agree to the authorities Terms of Service (value required depends on authority)")
    parser.add_argument("--staging", action="store_true",
                        help="Use the staging authority unless one is configured explicitly")
    parser.add_argument("--force-renew", "--renew-now", nargs="?",
                        help="Renew all certificate configurations matching the given value immediately")
    return parser.parse_args(argv)


# @brief load the configuration from command line and files
def load(argv=None):
    runtimeconfig = dict()
    args = parse_args(argv)

    # Determine certificate configuration directory
    if args.config_dir:
        cert_config_dir = args.config_dir
    else:
        cert_config_dir = DEFAULT_CONF_DIR

    # Determine global configuration file
    if args.config_file:
        global_config_file = args.config_file
    else:
        global_config_file = os.path.join(cert_config_dir, DEFAULT_CONF_FILENAME)

    # Runtime configuration: Get from command-line options
    # - work_dir
    if args.work_dir:
        runtimeconfig['work_dir'] = args.work_dir
    else:
        runtimeconfig['work_dir'] = cert_config_dir
    #  create work_dir if it does not exist yet
    if not os.path.isdir(runtimeconfig['work_dir']):
        os.mkdir(runtimeconfig['work_dir'], int("0700", 8))

    # - authority_tos_agreement
    runtimeconfig['authority_tos_agreement'] = args.authority_tos_agreement
    runtimeconfig['staging'] = args.staging

    # - force-renew
    if args.force_renew:
        domaintranslation = idna_convert(args.force_renew.split(' '))
        runtimeconfig['force_renew'] = [x for x, _ in domaintranslation]

    # Global configuration: Load from file
    globalconfig = dict()
    if os.path.isfile(global_config_file):
        globalconfig = read_config_file(global_config_file) or dict()

    # Certificate configuration(s): Load from file(s)
    certconfigs = list()
    if os.path.isdir(cert_config_dir):
        for cert_config_file in sorted(os.listdir(cert_config_dir)):
            cert_config_file = os.path.join(cert_config_dir, cert_config_file)
            # check file extension and skip if global config file
            if cert_config_file.endswith(".conf") and \
                    os.path.abspath(cert_config_file) != os.path.abspath(global_config_file):
                for entry in (read_config_file(cert_config_file) or dict()).items():
                    certconfigs.append(parse_config_entry(entry, globalconfig, runtimeconfig))

    return runtimeconfig, certconfigs
