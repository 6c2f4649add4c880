"""Shared fixtures: an in-process ACME authority and DNS provider."""

import base64
import datetime
import email.message
import hashlib
import io
import itertools
import json
import threading
import urllib.error
from unittest.mock import patch

import pytest
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from cryptography.x509.oid import NameOID

from dnscertmgr.authority.transport import Session
from dnscertmgr.authority.v2 import ACMEAuthority

CA_BASE = "https://ca.test"
DIRECTORY_URL = CA_BASE + "/directory"
BAD_NONCE = "urn:ietf:params:acme:error:badNonce"


def b64url(data):
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(text):
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def thumbprint(jwk):
    canonical = json.dumps({k: jwk[k] for k in ("crv", "kty", "x", "y")}, sort_keys=True, separators=(",", ":"))
    return b64url(hashlib.sha256(canonical.encode("utf8")).digest())


def _name(common_name):
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def make_certificate(subject, public_key, issuer, issuer_key, ca=False, sans=None, days=90):
    now = datetime.datetime.now(datetime.timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(_name(subject))
        .issuer_name(_name(issuer))
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(hours=1))
        .not_valid_after(now + datetime.timedelta(days=days))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
        .add_extension(x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_key.public_key()),
                       critical=False)
    )
    if sans:
        builder = builder.add_extension(x509.SubjectAlternativeName([x509.DNSName(n) for n in sans]),
                                        critical=False)
    return builder.sign(issuer_key, hashes.SHA256())


def to_pem(cert):
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


def key_id(public_key):
    digest = x509.SubjectKeyIdentifier.from_public_key(public_key).digest
    return ":".join("{:02X}".format(b) for b in digest)


class FakeResponse:
    def __init__(self, code, body, headers):
        self._code = code
        self._body = body
        self.headers = headers

    def read(self):
        return self._body

    def getcode(self):
        return self._code


class FakeDNS:
    """DNS provider keeping TXT records in memory."""

    def __init__(self, fail_add=()):
        self.records = {}
        self.added = []
        self.deleted = []
        self.fail_add = set(fail_add)
        self._lock = threading.Lock()

    def add_record(self, rtype, name, value):
        if name in self.fail_add:
            raise ValueError("provider refused {}".format(name))
        with self._lock:
            self.records.setdefault((rtype, name), set()).add(value)
            self.added.append((rtype, name, value))

    def delete_record(self, rtype, name, value):
        with self._lock:
            self.records.get((rtype, name), set()).discard(value)
            self.deleted.append((rtype, name, value))

    def has(self, rtype, name, value):
        with self._lock:
            return value in self.records.get((rtype, name), set())


class FakeCA:
    """Minimal RFC8555 authority answering urllib style requests.

    Nonces are checked and consumed, JWS signatures are verified and
    authorizations turn valid when the expected TXT record is published.
    Issued certificates come in a default chain (root A) and one
    alternate chain (root B).
    """

    def __init__(self, dns):
        self.dns = dns
        self.cname = None
        self.lock = threading.Lock()
        self.counter = itertools.count(1)
        self.nonces = set()
        self.good_nonces = set()
        self.reject_fresh_nonces = False
        self.always_bad_nonce = False
        self.order_status = "pending"
        self.finalize_status = "valid"
        self.fail_identifiers = set()
        self.fail_alternate = False
        self.offer_alternate = True
        self.requests = []
        self.accounts = {}
        self.orders = {}
        self.authorizations = {}
        self.challenges = {}
        self.certificates = {}

        self.root_a_key = ec.generate_private_key(ec.SECP256R1())
        self.root_b_key = ec.generate_private_key(ec.SECP256R1())
        self.intermediate_key = ec.generate_private_key(ec.SECP256R1())
        self.root_a_key_id = key_id(self.root_a_key.public_key())
        self.root_b_key_id = key_id(self.root_b_key.public_key())
        self.intermediate_a = make_certificate("Fake Intermediate", self.intermediate_key.public_key(),
                                               "Fake Root A", self.root_a_key, ca=True)
        self.intermediate_b = make_certificate("Fake Intermediate", self.intermediate_key.public_key(),
                                               "Fake Root B", self.root_b_key, ca=True)

    # -- helpers -----------------------------------------------------------

    def url(self, path):
        return "{}/{}".format(CA_BASE, path)

    @property
    def directory(self):
        return {
            "newNonce": self.url("new-nonce"),
            "newAccount": self.url("new-acct"),
            "newOrder": self.url("new-order"),
            "meta": {"termsOfService": self.url("terms")},
        }

    def _nonce(self, good=False):
        nonce = "nonce-{}".format(next(self.counter))
        self.nonces.add(nonce)
        if good:
            self.good_nonces.add(nonce)
        return nonce

    def _headers(self, nonce=True, good_nonce=False, **extra):
        headers = email.message.Message()
        if nonce:
            headers["Replay-Nonce"] = self._nonce(good_nonce)
        for name, value in extra.items():
            if isinstance(value, list):
                for item in value:
                    headers[name] = item
            else:
                headers[name] = value
        return headers

    def _json(self, code, obj, **extra):
        return FakeResponse(code, json.dumps(obj).encode("utf8"), self._headers(**extra))

    def _error(self, url, code, problem_type, detail, good_nonce=False):
        body = json.dumps({"type": problem_type, "detail": detail}).encode("utf8")
        return urllib.error.HTTPError(url, code, detail, self._headers(good_nonce=good_nonce), io.BytesIO(body))

    def record_name(self, authz):
        return self.cname or "_acme-challenge." + authz["identifier"]["value"]

    # -- urllib entry point --------------------------------------------------

    def get_url(self, url, data=None, headers=None, method=None):
        with self.lock:
            response = self._dispatch(url, data, method)
        if isinstance(response, urllib.error.HTTPError):
            raise response
        return response

    def _dispatch(self, url, data, method):
        if url == DIRECTORY_URL:
            return self._json(200, self.directory, nonce=False)
        if url == self.url("new-nonce"):
            return FakeResponse(200, b"", self._headers())
        if data is None:
            return self._error(url, 405, "urn:ietf:params:acme:error:malformed", "POST required")

        jws = json.loads(data.decode("utf8"))
        protected = json.loads(b64url_decode(jws["protected"]))
        payload_text = b64url_decode(jws["payload"]).decode("utf8")
        self.requests.append((url, protected, payload_text))

        nonce = protected.get("nonce")
        if nonce not in self.nonces or self.always_bad_nonce or \
                (self.reject_fresh_nonces and nonce not in self.good_nonces):
            self.nonces.discard(nonce)
            return self._error(url, 400, BAD_NONCE, "JWS has an invalid anti-replay nonce", good_nonce=True)
        self.nonces.discard(nonce)
        self.good_nonces.discard(nonce)
        if protected.get("url") != url:
            return self._error(url, 401, "urn:ietf:params:acme:error:unauthorized", "url mismatch")

        jwk = protected["jwk"] if "jwk" in protected else self.accounts.get(protected.get("kid"))
        if jwk is None:
            return self._error(url, 400, "urn:ietf:params:acme:error:accountDoesNotExist", "unknown account")
        if not self._verify(jws, jwk):
            return self._error(url, 400, "urn:ietf:params:acme:error:malformed", "bad signature")

        payload = json.loads(payload_text) if payload_text else None
        if url == self.url("new-acct"):
            return self._new_account(jwk, payload)
        if "kid" not in protected:
            return self._error(url, 400, "urn:ietf:params:acme:error:malformed", "kid required")
        account_jwk = jwk
        if url == self.url("new-order"):
            return self._new_order(payload)
        if url in self.authorizations:
            return self._json(200, self.authorizations[url])
        if url in self.challenges:
            return self._challenge(url, account_jwk)
        if url.endswith("/finalize"):
            return self._finalize(url[:-len("/finalize")], payload)
        if url in self.certificates:
            return self._certificate(url)
        return self._error(url, 404, "urn:ietf:params:acme:error:malformed", "not found")

    def _verify(self, jws, jwk):
        public_key = ec.EllipticCurvePublicNumbers(
            int.from_bytes(b64url_decode(jwk["x"]), "big"),
            int.from_bytes(b64url_decode(jwk["y"]), "big"),
            ec.SECP256R1()).public_key()
        signature = b64url_decode(jws["signature"])
        der = encode_dss_signature(int.from_bytes(signature[:32], "big"), int.from_bytes(signature[32:], "big"))
        try:
            public_key.verify(der, "{}.{}".format(jws["protected"], jws["payload"]).encode("ascii"),
                              ec.ECDSA(hashes.SHA256()))
        except InvalidSignature:
            return False
        return True

    # -- resources -----------------------------------------------------------

    def _new_account(self, jwk, payload):
        for account_url, known in self.accounts.items():
            if known == jwk:
                return self._json(200, {"status": "valid"}, Location=account_url)
        account_url = self.url("acct/{}".format(len(self.accounts) + 1))
        self.accounts[account_url] = jwk
        return self._json(201, {"status": "valid", "contact": payload.get("contact", [])}, Location=account_url)

    def _new_order(self, payload):
        order_id = len(self.orders) + 1
        order_url = self.url("order/{}".format(order_id))
        authz_urls = []
        for index, identifier in enumerate(payload["identifiers"]):
            value = identifier["value"]
            wildcard = value.startswith("*.")
            authz_url = self.url("authz/{}/{}".format(order_id, index))
            chall_url = self.url("chall/{}/{}".format(order_id, index))
            authz = {
                "status": "pending",
                "identifier": {"type": "dns", "value": value[2:] if wildcard else value},
                "challenges": [
                    {"type": "http-01", "url": chall_url + "-http", "token": "http-token"},
                    {"type": "dns-01", "url": chall_url, "token": "token-{}-{}".format(order_id, index)},
                ],
            }
            if wildcard:
                authz["wildcard"] = True
            self.authorizations[authz_url] = authz
            self.challenges[chall_url] = (authz_url, value)
            authz_urls.append(authz_url)
        order = {
            "status": self.order_status,
            "identifiers": payload["identifiers"],
            "authorizations": authz_urls,
            "finalize": order_url + "/finalize",
        }
        self.orders[order_url] = order
        return self._json(201, order, Location=order_url)

    def _challenge(self, url, jwk):
        authz_url, identifier = self.challenges[url]
        authz = self.authorizations[authz_url]
        challenge = [c for c in authz["challenges"] if c["url"] == url][0]
        expected = b64url(hashlib.sha256(
            "{}.{}".format(challenge["token"], thumbprint(jwk)).encode("utf8")).digest())
        if identifier in self.fail_identifiers:
            authz["status"] = "invalid"
        elif self.dns.has("TXT", self.record_name(authz), expected):
            authz["status"] = "valid"
        else:
            authz["status"] = "invalid"
        challenge["status"] = authz["status"]
        return self._json(200, challenge)

    def _finalize(self, order_url, payload):
        order = self.orders[order_url]
        if any(self.authorizations[a]["status"] != "valid" for a in order["authorizations"]):
            return self._error(order_url, 403, "urn:ietf:params:acme:error:orderNotReady", "order not ready")
        csr = x509.load_der_x509_csr(b64url_decode(payload["csr"]))
        sans = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value.get_values_for_type(
            x509.DNSName)
        common_name = csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
        leaf = make_certificate(common_name, csr.public_key(), "Fake Intermediate", self.intermediate_key,
                                sans=sans)
        cert_url = order_url + "/cert"
        self.certificates[cert_url] = to_pem(leaf) + to_pem(self.intermediate_a)
        self.certificates[cert_url + "/1"] = to_pem(leaf) + to_pem(self.intermediate_b)
        order["status"] = self.finalize_status
        order["certificate"] = cert_url
        return self._json(200, order)

    def _certificate(self, url):
        if url.endswith("/1") and self.fail_alternate:
            return self._error(url, 500, "urn:ietf:params:acme:error:serverInternal", "alternate unavailable")
        extra = {}
        if self.offer_alternate and not url.endswith("/1"):
            extra["Link"] = ['<{}/1>;rel="alternate"'.format(url), '<{}>;rel="index"'.format(self.url("directory"))]
        return FakeResponse(200, self.certificates[url].encode("ascii"), self._headers(**extra))


@pytest.fixture()
def fake_dns():
    return FakeDNS()


@pytest.fixture()
def fake_ca(fake_dns):
    ca = FakeCA(fake_dns)
    with patch("dnscertmgr.tools.get_url", side_effect=ca.get_url):
        yield ca


@pytest.fixture()
def authority_config():
    return {
        "directory_url": DIRECTORY_URL,
        "dns_settle_delay": 0,
        "poll_interval": 0,
        "poll_max_attempts": 3,
    }


@pytest.fixture()
def acme(fake_ca, fake_dns, authority_config):
    return ACMEAuthority(authority_config, fake_dns, Session.discover(DIRECTORY_URL))
