#!/usr/bin/env python
# -*- coding: utf-8 -*-

# dnscertmgr - various support functions
# Copyright (c) The dnscertmgr Authors, 2026.
# available under the ISC license, see LICENSE

import base64
import datetime
import io
import json
import os
import re
import stat
import sys
import traceback
from urllib.request import urlopen, Request

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa, ec, padding
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.utils import int_to_bytes
from cryptography.x509.oid import NameOID, ExtensionOID, SignatureAlgorithmOID

REGEX_PEM_BLOCK = r'-----BEGIN (?P<type>[A-Z0-9 ]+)-----\r?\n[^\-]+?-----END (?P=type)-----'

SIGNATURE_ALGORITHM_NAMES = {
    SignatureAlgorithmOID.RSA_WITH_SHA1: "SHA1-RSA",
    SignatureAlgorithmOID.RSA_WITH_SHA256: "SHA256-RSA",
    SignatureAlgorithmOID.RSA_WITH_SHA384: "SHA384-RSA",
    SignatureAlgorithmOID.RSA_WITH_SHA512: "SHA512-RSA",
    SignatureAlgorithmOID.RSASSA_PSS: "RSA-PSS",
    SignatureAlgorithmOID.ECDSA_WITH_SHA1: "ECDSA-SHA1",
    SignatureAlgorithmOID.ECDSA_WITH_SHA256: "ECDSA-SHA256",
    SignatureAlgorithmOID.ECDSA_WITH_SHA384: "ECDSA-SHA384",
    SignatureAlgorithmOID.ECDSA_WITH_SHA512: "ECDSA-SHA512",
    SignatureAlgorithmOID.ED25519: "Ed25519",
}


class InvalidCertificateError(Exception):
    pass


# @brief a simple, portable indent function
def indent(text, spaces=0):
    ind = ' ' * spaces
    return os.linesep.join(ind + line for line in text.splitlines())


# @brief wrapper for log output
def log(msg, exc=None, error=False, warning=False):
    if error:
        prefix = "Error: "
    elif warning:
        prefix = "Warning: "
    else:
        prefix = ""

    output = prefix + msg
    if exc:
        formatted_exc = traceback.format_exception(type(exc), exc, exc.__traceback__)
        output += os.linesep + indent(''.join(formatted_exc), len(prefix))

    if error or warning:
        sys.stderr.write(output + os.linesep)
        sys.stderr.flush()  # force flush buffers after message was written for immediate display
    else:
        sys.stdout.write(output + os.linesep)
        sys.stdout.flush()  # force flush buffers after message was written for immediate display


# @brief wrapper for downloading an url
def get_url(url, data=None, headers=None, method=None):
    return urlopen(Request(url, data=data, headers={} if headers is None else headers, method=method))


# @brief check whether existing certificate is still valid or expiring soon
# @param cert the certificate to check
# @param ttl_days the minimum amount of days for which the certificate must be valid
# @return True if certificate is still valid for at least ttl_days, False otherwise
def is_cert_valid(cert, ttl_days):
    now = datetime.datetime.now(datetime.timezone.utc)
    if cert.not_valid_before_utc > now:
        raise InvalidCertificateError("Certificate seems to be from the future")

    expiry_limit = now + datetime.timedelta(days=ttl_days)
    if cert.not_valid_after_utc < expiry_limit:
        return False

    return True


# @brief create a certificate signing request
# @param names list of domain names the certificate should be valid for
# @param key the key to use with the certificate
# @param must_staple whether or not the certificate should include the OCSP must-staple flag
# @return the CSR
def new_cert_request(names, key, must_staple=False):
    primary_name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, names[0])])
    all_names = x509.SubjectAlternativeName([x509.DNSName(name) for name in names])
    req = x509.CertificateSigningRequestBuilder()
    req = req.subject_name(primary_name)
    req = req.add_extension(all_names, critical=False)
    if must_staple:
        req = req.add_extension(x509.TLSFeature(features=[x509.TLSFeatureType.status_request]), critical=False)
    return req.sign(key, hashes.SHA256())


# @brief generate a new account key (ES256 unless told otherwise)
# @param path path where the new key file should be written in PEM format (optional)
def new_account_key(path=None, key_algo='ec', key_size=256):
    return new_ssl_key(path, key_algo, key_size)


# @brief generate a new ssl key
# @param path path where the new key file should be written in PEM format (optional)
def new_ssl_key(path=None, key_algo=None, key_size=None):
    if not key_algo or key_algo.lower() == 'rsa':
        if not key_size:
            key_size = 2048
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    elif key_algo.lower() == 'ec':
        if not key_size or key_size == 256:
            key_curve = ec.SECP256R1
        elif key_size == 384:
            key_curve = ec.SECP384R1
        elif key_size == 521:
            key_curve = ec.SECP521R1
        else:
            raise ValueError("Unsupported EC curve size parameter: {}".format(key_size))
        private_key = ec.generate_private_key(curve=key_curve())
    else:
        raise ValueError("Unsupported key algorithm: {}".format(key_algo))
    if path is not None:
        write_key_file(private_key, path)
    return private_key


# @brief render a private key as PEM (RSA PRIVATE KEY / EC PRIVATE KEY)
def convert_key_to_pem_str(key):
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode('utf8')


# @brief load a private key from a PEM str
def convert_pem_str_to_key(keydata):
    return serialization.load_pem_private_key(keydata.encode('utf8'), None)


# @brief write a private key to a file readable only by the owner
def write_key_file(key, path):
    with io.open(path, 'w') as pem_out:
        pem_out.write(convert_key_to_pem_str(key))
    try:
        os.chmod(path, int("0400", 8))
    except OSError:
        log('Could not set file permissions on {0}!'.format(path), warning=True)


# @brief read a key from file
# @param path path to file
# @param key indicate whether we are loading a key
# @return the key or certificate
def read_pem_file(path, key=False):
    with io.open(path, 'r') as f:
        if key:
            return convert_pem_str_to_key(f.read())
        else:
            return convert_pem_str_to_cert(f.read())


# @brief write PEM text to file
def write_pem_file(pem, path, perms=None):
    if os.path.exists(path):
        try:
            os.chmod(path, os.stat(path).st_mode | stat.S_IWRITE)
        except OSError:
            log('Could not make file ({0}) writable'.format(path), warning=True)
    with io.open(path, "w") as f:
        f.write(pem)
    if perms:
        try:
            os.chmod(path, perms)
        except OSError:
            log('Could not set file permissions ({0}) on {1}!'.format(perms, path), warning=True)


# @brief split a PEM bundle into its blocks, keeping the original text of each block
def split_pem_blocks(data):
    return [m.group(0) for m in re.finditer(REGEX_PEM_BLOCK, data)]


# @brief determine all san domains on a given certificate
def get_cert_domains(cert):
    try:
        san_cert = cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
    except x509.ExtensionNotFound:
        return []
    return san_cert.value.get_values_for_type(x509.DNSName)


# @brief determine certificate cn
def get_cert_cn(cert):
    return "CN={}".format(cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value)


# @brief determine the authority key identifier of a certificate (empty bytes if absent)
def get_cert_authority_key_id(cert):
    try:
        aki = cert.extensions.get_extension_for_oid(ExtensionOID.AUTHORITY_KEY_IDENTIFIER)
    except x509.ExtensionNotFound:
        return b''
    return aki.value.key_identifier or b''


# @brief name the signature algorithm of a certificate
def get_cert_signature_algorithm(cert):
    oid = cert.signature_algorithm_oid
    return SIGNATURE_ALGORITHM_NAMES.get(oid, oid.dotted_string)


# @brief format a datetime as UTC RFC3339 text
def format_utc_timestamp(dt):
    return dt.astimezone(datetime.timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


# @brief format a key identifier as colon separated upper case hex octets
def format_key_id(key_id):
    return ':'.join('{:02X}'.format(b) for b in key_id)


# @brief load a PEM certificate from str
def convert_pem_str_to_cert(certdata):
    return x509.load_pem_x509_certificate(certdata.encode('utf8'))


# @brief serialize cert/csr to DER bytes
def convert_cert_to_der_bytes(data):
    return data.public_bytes(serialization.Encoding.DER)


# @brief determine key signing algorithm and jwk data
# @return signature algorithm, key numbers as a dict
def get_key_alg_and_jwk(key):
    if isinstance(key, rsa.RSAPrivateKey):
        # See https://tools.ietf.org/html/rfc7518#section-6.3
        numbers = key.public_key().public_numbers()
        return "RS256", {"kty": "RSA",
                         "e": bytes_to_base64url(int_to_bytes(numbers.e)),
                         "n": bytes_to_base64url(int_to_bytes(numbers.n))}
    elif isinstance(key, ec.EllipticCurvePrivateKey):
        # See https://tools.ietf.org/html/rfc7518#section-6.2
        numbers = key.public_key().public_numbers()
        if isinstance(numbers.curve, ec.SECP256R1):
            alg = 'ES256'
            crv = 'P-256'
        elif isinstance(numbers.curve, ec.SECP384R1):
            alg = 'ES384'
            crv = 'P-384'
        elif isinstance(numbers.curve, ec.SECP521R1):
            alg = 'ES512'
            crv = 'P-521'
        else:
            raise ValueError("Unsupported EC curve in key: {}".format(key))
        full_octets = (int(crv[2:]) + 7) // 8
        return alg, {"kty": "EC", "crv": crv,
                     "x": bytes_to_base64url(int_to_bytes(numbers.x, full_octets)),
                     "y": bytes_to_base64url(int_to_bytes(numbers.y, full_octets))}
    else:
        raise ValueError("Unsupported key: {}".format(key))


# @brief compute the RFC7638 thumbprint of a jwk (base64url encoded)
def jwk_thumbprint(jwk):
    return bytes_to_base64url(hash_of_str(json.dumps(jwk, sort_keys=True, separators=(',', ':'))))


# @brief compute the dns-01 TXT record value for a challenge token
def dns_txt_value(token, thumbprint):
    return bytes_to_base64url(hash_of_str("{0}.{1}".format(token, thumbprint)))


# @brief sign string with key
def signature_of_str(key, string):
    alg, _ = get_key_alg_and_jwk(key)
    data = string.encode('utf8')
    if alg == 'RS256':
        return key.sign(data, padding.PKCS1v15(), hashes.SHA256())
    elif alg.startswith('ES'):
        full_octets = (int(alg[2:]) + 7) // 8
        if alg == 'ES256':
            der_sig = key.sign(data, ec.ECDSA(hashes.SHA256()))
        elif alg == 'ES384':
            der_sig = key.sign(data, ec.ECDSA(hashes.SHA384()))
        elif alg == 'ES512':
            der_sig = key.sign(data, ec.ECDSA(hashes.SHA512()))
        else:
            raise ValueError("Unsupported EC signature algorithm: {}".format(alg))
        # convert DER signature to RAW format (https://tools.ietf.org/html/rfc7518#section-3.4)
        r, s = decode_dss_signature(der_sig)
        return int_to_bytes(r, full_octets) + int_to_bytes(s, full_octets)
    else:
        raise ValueError("Unsupported signature algorithm: {}".format(alg))


# @brief hash a string
def hash_of_str(string):
    account_hash = hashes.Hash(hashes.SHA256())
    account_hash.update(string.encode('utf8'))
    return account_hash.finalize()


# @brief helper function to base64 encode for JSON objects
# @param b the byte-string to encode
# @return the encoded string
def bytes_to_base64url(b):
    return base64.urlsafe_b64encode(b).decode('utf8').replace("=", "")


# @brief parse Link header values into (url, rel, params) tuples
# @param values list of raw header values (a header may also hold several comma separated links)
def parse_link_headers(values):
    links = list()
    for value in values:
        for chunk in re.findall(r'<[^>]*>[^,]*', value):
            url = None
            rel = None
            params = dict()
            for piece in [p.strip() for p in chunk.split(';')]:
                if not piece:
                    continue
                if piece.startswith('<') and piece.endswith('>'):
                    url = piece[1:-1]
                    continue
                key, _, val = piece.partition('=')
                key = key.strip()
                if not key:
                    continue
                val = val.strip().strip('"')
                if key.lower() == 'rel':
                    rel = val
                else:
                    params[key] = val
            if url:
                links.append((url, rel, params))
    return links


# @brief convert domain list to idna representation (if applicable)
def idna_convert(domainlist):
    if any(ord(c) >= 128 for c in ''.join(domainlist)):
        try:
            domaintranslation = list()
            for domain in domainlist:
                if any(ord(c) >= 128 for c in domain):
                    # Translate IDNA domain name from a unicode domain (handle wildcards separately)
                    if domain.startswith('*.'):
                        idna_domain = "*.{}".format(domain[2:].encode('idna').decode('ascii'))
                    else:
                        idna_domain = domain.encode('idna').decode('ascii')
                    result = idna_domain, domain
                else:
                    result = domain, domain
                domaintranslation.append(result)
            return domaintranslation
        except UnicodeError as e:
            log("Unicode domain(s) found but IDNA names could not be translated due to error: {}".format(e), error=True)
    return [(x, x) for x in domainlist]
