#!/usr/bin/env python
# -*- coding: utf-8 -*-

# dnscertmgr - acme api v2 functions (implements the dns-01 subset of RFC8555)
# Copyright (c) The dnscertmgr Authors, 2026.
# available under the ISC license, see LICENSE

import copy
import time
from concurrent.futures import ThreadPoolExecutor

from dnscertmgr import tools
from dnscertmgr.authority import chain
from dnscertmgr.authority.acme import ACMEAuthority as AbstractACMEAuthority, Account, ACMEError, \
    AuthorizationError, OrderError
from dnscertmgr.authority.transport import Payload, Session
from dnscertmgr.tools import log

# Seconds to wait after publishing a TXT record before asking the authority to check it
DNS_SETTLE_DELAY = 30
# Seconds between two authorization status polls
POLL_INTERVAL = 5
# Maximum number of authorization status polls per challenge
POLL_MAX_ATTEMPTS = 20

CHALLENGE_TYPE = "dns-01"
RECORD_TYPE = "TXT"


class ACMEAuthority(AbstractACMEAuthority):
    # @brief Init class with config
    # @param config Configuration data (directory_url, root_ca_key_id and timing overrides)
    # @param dns the dns provider used to publish challenge records
    # @param session an already discovered Session (discovered from config['directory_url'] otherwise)
    def __init__(self, config, dns, session=None):
        AbstractACMEAuthority.__init__(self, config, dns)
        self.root_ca_key_id = config.get('root_ca_key_id') or None
        self.dns_settle_delay = float(config.get('dns_settle_delay', DNS_SETTLE_DELAY))
        self.poll_interval = float(config.get('poll_interval', POLL_INTERVAL))
        self.poll_max_attempts = int(config.get('poll_max_attempts', POLL_MAX_ATTEMPTS))
        self.must_staple = str(config.get('cert_must_staple')).lower() == 'true'
        if session is None:
            session = Session.discover(config['directory_url'])
        self.session = session

    @property
    def account(self):
        return self.session.account

    # @brief copy of this authority with its own nonce state and per-call overrides
    def clone(self, **overrides):
        config = dict(self.config)
        config.update({k: v for k, v in overrides.items() if v is not None})
        clone = copy.copy(self)
        clone.config = config
        clone.root_ca_key_id = config.get('root_ca_key_id') or None
        clone.session = self.session.clone()
        return clone

    # @brief register the current session account over ACME
    def _register_account(self):
        account = self.session.account
        payload = {
            "termsOfServiceAgreed": bool(account.tos_agreed),
            "onlyReturnExisting": False,
        }
        if account.contact:
            payload["contact"] = ["mailto:{}".format(contact) for contact in account.contact]
        result, headers = self.session.post(self.session.directory['newAccount'], Payload.json(payload),
                                            use_kid=False)
        if not isinstance(result, dict) or result.get('status') != 'valid':
            raise ACMEError("Error registering account: {0}".format(result))
        if not headers.get('Location'):
            raise ACMEError("Account registration did not return an account url")
        account.url = headers['Location']
        meta = self.session.directory.get('meta', {})
        if account.tos_agreed and 'termsOfService' in meta:
            log("ToS at {} have been accepted.".format(meta['termsOfService']))
        log("Account {} registered and valid.".format(account.url))
        return account

    def create_account_with_email(self, email, tos_agreed):
        self.session.account = Account(contact=email, tos_agreed=tos_agreed, key=tools.new_account_key())
        return self._register_account()

    def adopt_account(self, account):
        if account.key is None:
            raise ACMEError("Account has no private key to adopt")
        self.session.account = account
        return account

    def create_account_with_private_key(self, account):
        self.adopt_account(account)
        return self._register_account()

    # @brief open an order for the given domains
    # @return the order object (authorizations, finalize url)
    def new_order(self, identifiers):
        log("Ordering certificate for {}".format(identifiers))
        payload = {'identifiers': [{'type': 'dns', 'value': domain} for domain in identifiers]}
        order, _ = self.session.post(self.session.directory['newOrder'], Payload.json(payload))
        if order.get('status') not in ('pending', 'ready'):
            raise OrderError("Error with certificate order, status {0}: {1}".format(order.get('status'), order))
        return order

    def _get_authorization(self, url):
        authorization, _ = self.session.post(url)
        return authorization

    # @brief record name to publish the dns-01 value at
    @staticmethod
    def challenge_record_name(domain, cname=None):
        if cname:
            return cname
        return "_acme-challenge.{0}".format(domain)

    # @brief dns-01 TXT value for a challenge token under the current account key
    def challenge_record_value(self, token):
        _, jwk = tools.get_key_alg_and_jwk(self.session.account.key)
        return tools.dns_txt_value(token, tools.jwk_thumbprint(jwk))

    # @brief complete the dns-01 challenge of a single authorization
    def _resolve_authorization(self, url, cname=None):
        authorization = self._get_authorization(url)
        if authorization.get('status') != 'pending':
            return
        domain = authorization['identifier']['value']
        matching_challenges = [c for c in authorization.get('challenges', []) if c.get('type') == CHALLENGE_TYPE]
        if len(matching_challenges) == 0:
            raise ACMEError("Error no challenge matching {0} found: {1}".format(CHALLENGE_TYPE, authorization))
        challenge = matching_challenges[0]

        name = self.challenge_record_name(domain, cname)
        value = self.challenge_record_value(challenge['token'])
        log("Authorizing {0} using TXT record {1}".format(domain, name))
        self.dns.add_record(RECORD_TYPE, name, value)
        try:
            time.sleep(self.dns_settle_delay)
            # notify challenge is met
            self.session.post(challenge['url'], Payload.json({}))
            # wait for the authorization to leave pending
            for _ in range(self.poll_max_attempts):
                authorization = self._get_authorization(url)
                if authorization.get('status') != 'pending':
                    break
                time.sleep(self.poll_interval)
            log("{0} authorization finished with status {1}".format(domain, authorization.get('status')))
        finally:
            self.dns.delete_record(RECORD_TYPE, name, value)

    def _resolve_authorization_result(self, url, cname):
        try:
            self._resolve_authorization(url, cname)
        except Exception as e:
            return e
        return None

    # @brief validate all authorizations of an order concurrently
    # @return list with one entry per authorization: None or the exception its validation raised
    def validate_authorizations(self, authorizations, cname=None):
        results = list()
        if authorizations:
            with ThreadPoolExecutor(max_workers=len(authorizations)) as executor:
                results = list(executor.map(lambda url: self._resolve_authorization_result(url, cname),
                                            authorizations))
        for url, result in zip(authorizations, results):
            if result is not None:
                log("Validation of {} failed".format(url), result, error=True)

        # the authority decides: every authorization has to be valid now
        for url in authorizations:
            status = self._get_authorization(url).get('status')
            if status != 'valid':
                raise AuthorizationError(url, status)
        return results

    # @brief submit the csr for the order
    # @return the finalized order object
    def finalize_order(self, order, csr):
        log("Finalizing certificate")
        finalized, _ = self.session.post(order['finalize'], Payload.json({
            "csr": tools.bytes_to_base64url(tools.convert_cert_to_der_bytes(csr)),
        }))
        if finalized.get('status') != 'valid':
            raise OrderError("Order status not valid after finalization: {0}".format(finalized.get('status')))
        log("Certificate ready!")
        return finalized

    # @brief download the issued chain and all alternate chains
    # @return list of PEM bundles, the default chain first
    def download_chains(self, url):
        body, headers = self.session.post(url, raw_result=True)
        bodies = [body]
        link_values = headers.get_all('Link') if hasattr(headers, 'get_all') else headers.get('Link')
        if isinstance(link_values, str):
            link_values = [link_values]
        for link_url, rel, _ in tools.parse_link_headers(link_values or []):
            if rel != 'alternate':
                continue
            try:
                alternate, _ = self.session.post(link_url, raw_result=True)
            except ACMEError as e:
                log("Downloading alternate chain {} failed: {}".format(link_url, e), warning=True)
                continue
            bodies.append(alternate)
        return bodies

    def sign_cert_with_dns(self, identifiers, cname=None, root_ca_key_id=None, dns=None):
        if not identifiers:
            raise OrderError("No identifiers given")
        authority = self.clone(root_ca_key_id=root_ca_key_id)
        if dns is not None:
            authority.dns = dns
        if authority.dns is None:
            raise ACMEError("No dns provider configured to publish challenge records")
        return authority._sign_cert_with_dns(list(identifiers), cname)

    def _sign_cert_with_dns(self, identifiers, cname):
        # local construction first, nothing has been sent yet when this fails
        key = tools.new_ssl_key(key_algo='rsa', key_size=2048)
        csr = tools.new_cert_request(identifiers, key, self.must_staple)

        order = self.new_order(identifiers)
        self.validate_authorizations(order.get('authorizations', []), cname)
        finalized = self.finalize_order(order, csr)
        bodies = self.download_chains(finalized['certificate'])
        return chain.select_chain(bodies, tools.convert_key_to_pem_str(key), self.root_ca_key_id)
