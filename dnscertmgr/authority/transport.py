#!/usr/bin/env python
# -*- coding: utf-8 -*-

# dnscertmgr - signed request transport for acme (RFC8555 section 6)
# Copyright (c) The dnscertmgr Authors, 2026.
# available under the ISC license, see LICENSE

import json
import threading
import time

from dnscertmgr import tools
from dnscertmgr.authority.acme import ACMEError, ProtocolError
from dnscertmgr.tools import log

# Maximum age for nonce values (Boulder invalidates them after some time, so we use a low value of 2 minutes here)
MAX_NONCE_AGE = 120
CONTENT_TYPE = 'application/jose+json'


class Payload:
    """Body of a signed request.

    Either a structure serialized to JSON, a pre-serialized string or the
    empty string used for POST-as-GET.
    """
    JSON = 'json'
    RAW = 'raw'
    EMPTY = 'empty'

    def __init__(self, kind, value=None):
        self.kind = kind
        self.value = value

    @classmethod
    def json(cls, obj):
        return cls(cls.JSON, obj)

    @classmethod
    def raw(cls, text):
        return cls(cls.RAW, text)

    @classmethod
    def empty(cls):
        return cls(cls.EMPTY)

    def encode(self):
        if self.kind == self.JSON:
            return json.dumps(self.value, sort_keys=True, separators=(',', ':'))
        elif self.kind == self.RAW:
            return self.value
        return ""


class Session:
    """Connection state towards one authority.

    The directory and account are shared with clones, the nonce is not:
    each clone starts without a nonce and with its own lock.
    """

    def __init__(self, directory, account=None):
        self.directory = directory
        self.account = account
        self.nonce = None
        self.nonce_time = 0
        self._lock = threading.Lock()

    @classmethod
    def discover(cls, directory_url, account=None):
        code, directory, _ = cls(None)._request_url(directory_url)
        if code >= 400 or not isinstance(directory, dict):
            raise ACMEError("API directory retrieval from {0} failed ({1}): {2}".format(directory_url, code,
                                                                                     directory))
        for name in ('newNonce', 'newAccount', 'newOrder'):
            if name not in directory:
                raise ACMEError("API directory at {0} lacks required entry {1}".format(directory_url, name))
        return cls(directory, account)

    def clone(self):
        return Session(self.directory, self.account)

    def _store_nonce(self, headers):
        nonce = headers.get('Replay-Nonce') if headers else None
        if nonce:
            self.nonce = nonce
            self.nonce_time = time.time()

    # @brief fetch a given url
    # @return status code, body (decoded JSON unless raw_result or an error), response headers
    def _request_url(self, url, data=None, raw_result=False, method=None):
        header = {'Content-Type': CONTENT_TYPE}
        if data is not None:
            # Always encode data to bytes
            data = data.encode('utf-8')
        try:
            resp = tools.get_url(url, data, header, method)
        except IOError as e:
            # HTTPError carries status, headers and the problem document, other errors only a message
            headers = getattr(e, "headers", None) or {}
            self._store_nonce(headers)
            body = e.read() if hasattr(e, "read") else str(e)
            if getattr(body, 'decode', None):
                body = body.decode('utf-8')
            return getattr(e, "code", 999), body, headers

        self._store_nonce(resp.headers)

        body = resp.read()
        if getattr(body, 'decode', None):
            body = body.decode('utf-8')
        if not raw_result and len(body) > 0:
            try:
                body = json.loads(body)
            except ValueError as e:
                raise ACMEError('Could not parse non-raw result from {} (expected JSON): {}'.format(url, e))

        return resp.getcode(), body, resp.headers

    @staticmethod
    def _problem(body):
        if isinstance(body, dict):
            return body
        try:
            problem = json.loads(body)
        except (TypeError, ValueError):
            return {'detail': body}
        return problem if isinstance(problem, dict) else {'detail': body}

    @classmethod
    def _error(cls, code, body):
        problem = cls._problem(body)
        return ProtocolError(code, problem.get('type'), problem.get('detail'))

    def _sign(self, url, payload, use_kid):
        account = self.account
        if account is None or account.key is None:
            raise ACMEError("No account key available to sign request to {}".format(url))

        algorithm, jwk = tools.get_key_alg_and_jwk(account.key)
        # Request a new nonce if there is none in cache
        if not self.nonce or time.time() > self.nonce_time + MAX_NONCE_AGE:
            code, body, _ = self._request_url(self.directory['newNonce'], method='HEAD')
            if code >= 400:
                raise self._error(code, body)
            if not self.nonce:
                raise ProtocolError(code, detail="No Replay-Nonce returned by {}".format(self.directory['newNonce']))
        protected = {
            "alg": algorithm,
            "nonce": self.nonce,
            "url": url,
        }
        # Reset nonce cache as we are using it's current value
        self.nonce = None

        if use_kid:
            if not account.url:
                raise ACMEError("Account is not registered, cannot sign request to {}".format(url))
            protected["kid"] = account.url
        else:
            protected["jwk"] = jwk

        protected64 = tools.bytes_to_base64url(json.dumps(protected).encode('utf8'))
        payload64 = tools.bytes_to_base64url(payload.encode().encode('utf8'))
        out = tools.signature_of_str(account.key, '.'.join([protected64, payload64]))
        return json.dumps({
            "protected": protected64,
            "payload": payload64,
            "signature": tools.bytes_to_base64url(out),
        })

    # @brief send a signed request, retrying once on a stale nonce
    # @param url the target url
    # @param payload a Payload (defaults to POST-as-GET)
    # @param use_kid identify by account url instead of embedding the public key
    # @param raw_result do not decode the response body as JSON
    # @return response body and headers
    def post(self, url, payload=None, use_kid=True, raw_result=False):
        if payload is None:
            payload = Payload.empty()

        with self._lock:
            code, body, headers = self._request_url(url, self._sign(url, payload, use_kid), raw_result)
            if code >= 400 and self._error(code, body).is_bad_nonce:
                log("Nonce rejected by {}, retrying with a fresh one".format(url))
                code, body, headers = self._request_url(url, self._sign(url, payload, use_kid), raw_result)

        if code >= 400:
            raise self._error(code, body)
        return body, headers
