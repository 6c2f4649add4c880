#!/usr/bin/env python
# -*- coding: utf-8 -*-

# DNS validated certificate manager using ACME
# Copyright (c) The dnscertmgr Authors, 2026.
# available under the ISC license, see LICENSE

import os
import stat

from dnscertmgr import configuration, tools
from dnscertmgr.authority import authority
from dnscertmgr.authority.acme import Account
from dnscertmgr.providers import dns_provider
from dnscertmgr.tools import log

# authorities with an account already set up during this run
_account_ready = set()


# @brief make sure the authority has a registered account for the given settings
# @param acme the authority
# @param settings the authority configuration options
def account_setup(acme, settings):
    if id(acme) in _account_ready:
        return acme.account
    acc_file = settings['account_key']
    if os.path.isfile(acc_file):
        log("Reading account key from {}".format(acc_file))
        account = Account(contact=settings.get('authority_contact_email'),
                          tos_agreed=settings['authority_tos_agreement'],
                          url=settings.get('account_url'),
                          key=tools.read_pem_file(acc_file, key=True))
        if account.url:
            acme.adopt_account(account)
        else:
            acme.create_account_with_private_key(account)
    else:
        log("Account key not found at '{0}'. Creating account.".format(acc_file))
        account = acme.create_account_with_email(settings.get('authority_contact_email'),
                                                 settings['authority_tos_agreement'])
        tools.write_key_file(account.key, acc_file)
    _account_ready.add(id(acme))
    return account


# @brief fetch new certificate from the authority
# @param settings the certificate's configuration options
def cert_get(settings):
    log("Getting certificate for %s" % settings['domainlist'])

    acme = authority(settings['authority'])
    account_setup(acme, settings['authority'])

    bundle = acme.sign_cert_with_dns(settings['domainlist'],
                                     cname=settings.get('dns_cname'),
                                     root_ca_key_id=settings.get('root_ca_key_id'),
                                     dns=dns_provider(settings['dns']))

    log("Certificate for {} issued, valid from {} until {} (root key id {})".format(
        settings['domainlist'], bundle.not_before, bundle.not_after, bundle.root_ca_key_id or '-'))
    tools.write_pem_file(bundle.pem_cert_private_key, settings['key_file'], stat.S_IREAD)
    tools.write_pem_file(bundle.pem_cert_body, settings['cert_file'], stat.S_IREAD)
    tools.write_pem_file(bundle.pem_cert_chain, settings['ca_file'])
    tools.write_pem_file(bundle.pem_cert_body_with_chain, settings['fullchain_file'])
    return bundle


# @brief determine whether the certificate of the given settings has to be (re-)issued
def cert_needs_renewal(settings, runtimeconfig):
    if 'force_renew' in runtimeconfig and all(d in settings['domainlist'] for d in runtimeconfig['force_renew']):
        return True
    if not os.path.isfile(settings['cert_file']):
        return True
    cert = tools.read_pem_file(settings['cert_file'])
    if set(tools.get_cert_domains(cert)) != set(settings['domainlist']):
        log("Domains of {} changed".format(tools.get_cert_cn(cert)))
        return True
    return not tools.is_cert_valid(cert, settings['ttl_days'])


def main(argv=None):
    # load config
    runtimeconfig, certconfigs = configuration.load(argv)
    exceptions = list()
    # check certificate validity and obtain/renew certificates if needed
    for config in certconfigs:
        try:
            if cert_needs_renewal(config, runtimeconfig):
                cert_get(config)
        except Exception as e:
            log("Certificate issue/renew failed", e, error=True)
            exceptions.append(e)

    # throw a RuntimeError with all exceptions caught while working if there were any
    if len(exceptions) > 0:
        raise RuntimeError("{} exception(s) occurred during processing".format(len(exceptions)))
