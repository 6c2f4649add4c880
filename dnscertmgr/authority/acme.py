#!/usr/bin/env python
# -*- coding: utf-8 -*-

# dnscertmgr - generic acme api types and functions
# Copyright (c) The dnscertmgr Authors, 2026.
# available under the ISC license, see LICENSE

from dnscertmgr import tools


class ACMEError(ValueError):
    pass


# @brief the authority answered with a problem document (status >= 400)
class ProtocolError(ACMEError):
    def __init__(self, code, type=None, detail=None):
        self.code = code
        self.type = type if isinstance(type, str) else ''
        self.detail = '' if detail is None else str(detail)
        ACMEError.__init__(self, "{0} {1} {2}".format(code, self.type, self.detail).strip())

    @property
    def is_bad_nonce(self):
        return self.code == 400 and self.type.endswith(':badNonce')


class KeyDecodeError(ACMEError):
    pass


class OrderError(ACMEError):
    pass


# @brief an authorization did not reach status valid
class AuthorizationError(ACMEError):
    def __init__(self, url, status):
        self.url = url
        self.status = status
        ACMEError.__init__(self, "authorization {0} failed, status: {1}".format(url, status))


# @brief certificates were issued but no downloaded chain matched the requested root
class ChainSelectionError(ACMEError):
    pass


class Account:
    # @param contact list of contact email addresses (without mailto:)
    # @param tos_agreed whether the terms of service of the authority are agreed to
    # @param url the account url (key identifier) once registered
    # @param key the account private key object
    # @param pem_private_key the account private key in PEM format (used when key is not given)
    def __init__(self, contact=None, tos_agreed=False, url=None, key=None, pem_private_key=None):
        if isinstance(contact, str):
            contact = [contact]
        self.contact = list(contact or [])
        self.tos_agreed = tos_agreed
        self.url = url
        self.key = key
        if self.key is None and pem_private_key:
            self.load_private_key(pem_private_key)

    def load_private_key(self, pem_private_key):
        try:
            self.key = tools.convert_pem_str_to_key(pem_private_key)
        except (ValueError, TypeError) as e:
            raise KeyDecodeError("Could not decode account private key: {}".format(e))

    @property
    def pem_private_key(self):
        if self.key is None:
            return None
        return tools.convert_key_to_pem_str(self.key)

    def __repr__(self):
        return "Account(contact={0!r}, tos_agreed={1!r}, url={2!r})".format(self.contact, self.tos_agreed, self.url)


class CertificateBundle:
    def __init__(self, signature_algorithm, not_before, not_after, pem_cert_body, pem_cert_chain,
                 pem_cert_body_with_chain, root_ca_key_id, pem_cert_private_key):
        self.signature_algorithm = signature_algorithm
        self.not_before = not_before
        self.not_after = not_after
        self.pem_cert_body = pem_cert_body
        self.pem_cert_chain = pem_cert_chain
        self.pem_cert_body_with_chain = pem_cert_body_with_chain
        self.root_ca_key_id = root_ca_key_id
        self.pem_cert_private_key = pem_cert_private_key

    def __repr__(self):
        return "CertificateBundle(signature_algorithm={0!r}, not_before={1!r}, not_after={2!r}, " \
               "root_ca_key_id={3!r})".format(self.signature_algorithm, self.not_before, self.not_after,
                                              self.root_ca_key_id)


class ACMEAuthority:
    # @brief Init class with config
    # @param config Configuration data
    # @param dns the dns provider used to publish challenge records
    def __init__(self, config, dns):
        self.config = config
        self.dns = dns

    # @brief create and register a new account with a fresh key
    def create_account_with_email(self, email, tos_agreed):
        raise NotImplementedError

    # @brief use an existing account without contacting the authority
    def adopt_account(self, account):
        raise NotImplementedError

    # @brief import an existing account key and register it
    def create_account_with_private_key(self, account):
        raise NotImplementedError

    # @brief function to fetch a certificate using dns-01 validation
    # @param identifiers list of domains in the certificate, first is CN
    # @param cname optional record name to publish challenges at instead of _acme-challenge.<domain>
    # @param root_ca_key_id optional root authority key identifier the chain must end in
    # @param dns optional dns provider to use instead of the configured one
    # @return a CertificateBundle
    def sign_cert_with_dns(self, identifiers, cname=None, root_ca_key_id=None, dns=None):
        raise NotImplementedError
