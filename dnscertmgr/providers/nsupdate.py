#!/usr/bin/env python
# -*- coding: utf-8 -*-

# providers.nsupdate - rfc2136 based dns provider
# Copyright (c) The dnscertmgr Authors, 2026.
# available under the ISC license, see LICENSE

import io
import ipaddress
import re
import socket

import dns
import dns.exception
import dns.message
import dns.name
import dns.query
import dns.rcode
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.resolver
import dns.tsigkeyring
import dns.update

from dnscertmgr.providers.abstract import AbstractDNSProvider
from dnscertmgr.tools import log

QUERY_TIMEOUT = 60  # seconds are the maximum for any query (otherwise the DNS server will be considered dead)
DEFAULT_KEY_ALGORITHM = "HMAC-MD5.SIG-ALG.REG.INT"

_lookup_ip_cache = {}
_lookup_zone_cache = {}


class DNSProvider(AbstractDNSProvider):
    @staticmethod
    def _read_tsigkey(tsig_key_file, key_name=None):
        try:
            with io.open(tsig_key_file) as key_file:
                key_struct = key_file.read()
                if not key_name:
                    key_name = re.search(r"key \"?([^\"{ ]+?)\"? {.*};", key_struct, re.DOTALL).group(1)
                key_data = re.search(r"key \"?%s\"? {(.*?)};" % re.escape(key_name), key_struct, re.DOTALL).group(1)
                algorithm = re.search(r"algorithm ([a-zA-Z0-9_-]+?);", key_data, re.DOTALL).group(1)
                tsig_secret = re.search(r"secret \"(.*?)\"", key_data, re.DOTALL).group(1)
        except IOError as exc:
            raise ValueError("A problem was encountered opening your keyfile '{}': {}".format(tsig_key_file, exc))
        except AttributeError as exc:
            raise ValueError("Unable to decipher data from your keyfile: {}".format(exc))

        keyring = dns.tsigkeyring.from_text({
            key_name: tsig_secret
        })

        if not algorithm:
            algorithm = DEFAULT_KEY_ALGORITHM

        return keyring, algorithm

    @staticmethod
    def _lookup_ip(domain_or_ip):
        if domain_or_ip in _lookup_ip_cache:
            return _lookup_ip_cache[domain_or_ip]

        try:
            return str(ipaddress.ip_address(domain_or_ip.strip()))
        except ValueError:
            pass
        # No valid ip found so far, try to resolve using system resolver
        result = socket.getaddrinfo(domain_or_ip, 53)
        if len(result) > 0:
            retval = result[0][4][0]
            _lookup_ip_cache[domain_or_ip] = retval
            return retval
        else:
            raise ValueError("Could not lookup dns ip for {}".format(domain_or_ip))

    @staticmethod
    def _lookup_zone(domain, nameserver=None):
        cache_key = "{}${}".format(domain, nameserver)
        if cache_key in _lookup_zone_cache:
            return _lookup_zone_cache[cache_key]

        if nameserver:
            nameservers = [nameserver]
        else:
            nameservers = dns.resolver.get_default_resolver().nameservers

        domain = DNSProvider._absolute_name(domain)
        while domain.parent() != dns.name.root:
            request = dns.message.make_query(domain, dns.rdatatype.SOA)
            for nameserver in nameservers:
                try:
                    response = dns.query.udp(request, nameserver, timeout=QUERY_TIMEOUT)
                    if response.rcode() == dns.rcode.NOERROR:
                        for answer in response.answer:
                            for item in answer:
                                if item.rdtype == dns.rdatatype.SOA:
                                    zone = domain.to_text()
                                    authoritative_ns = item.mname.to_text().split(' ')[0]
                                    retval = zone, authoritative_ns
                                    _lookup_zone_cache[cache_key] = retval
                                    return retval
                    else:
                        break
                except dns.exception.Timeout:
                    # Go to next nameserver on timeout
                    continue
                except dns.exception.DNSException:
                    # Break loop on any other error
                    break
            domain = domain.parent()
        raise ValueError('No zone SOA for "{0}"'.format(domain))

    @staticmethod
    def _absolute_name(name):
        name = dns.name.from_text(name)
        if not name.is_absolute():
            name = name.concatenate(dns.name.root)
        return name

    def __init__(self, config):
        AbstractDNSProvider.__init__(self, config)
        if 'nsupdate_keyfile' in config:
            nsupdate_keyname = config.get("nsupdate_keyname", None)
            self.keyring, self.keyalgorithm = self._read_tsigkey(config.get("nsupdate_keyfile"), nsupdate_keyname)
        elif 'nsupdate_keyname' in config:
            self.keyring = dns.tsigkeyring.from_text({
                config.get("nsupdate_keyname"): config.get("nsupdate_keyvalue")
            })
            self.keyalgorithm = config.get("nsupdate_keyalgorithm", DEFAULT_KEY_ALGORITHM)
        else:
            self.keyring = None
            self.keyalgorithm = None
        self.nsupdate_server = config.get("nsupdate_server")

    def _determine_zone_and_nameserverip(self, domain):
        nameserver = self.nsupdate_server
        if nameserver:
            nameserverip = self._lookup_ip(nameserver)
            zone, _ = self._lookup_zone(domain, nameserverip)
        else:
            zone, nameserver = self._lookup_zone(domain)
            nameserverip = self._lookup_ip(nameserver)
        return zone, nameserverip

    def _send_update(self, update, nameserverip):
        response = dns.query.tcp(update, nameserverip, timeout=QUERY_TIMEOUT)
        if response.rcode() != dns.rcode.NOERROR:
            raise ValueError("DNS update on {0} failed: {1}".format(nameserverip, dns.rcode.to_text(response.rcode())))

    def add_record(self, rtype, name, value):
        domain = self._absolute_name(name).to_text()
        zone, nameserverip = self._determine_zone_and_nameserverip(domain)
        update = dns.update.Update(zone, keyring=self.keyring, keyalgorithm=self.keyalgorithm)
        # rfc2136 ignores adding an rr that already exists
        update.add(domain, self.dns_ttl, dns.rdatatype.from_text(rtype), value)
        log('Adding \'{} {} IN {} "{}"\' to {}'.format(domain, self.dns_ttl, rtype, value, nameserverip))
        self._send_update(update, nameserverip)

    def delete_record(self, rtype, name, value):
        domain = self._absolute_name(name).to_text()
        zone, nameserverip = self._determine_zone_and_nameserverip(domain)
        update = dns.update.Update(zone, keyring=self.keyring, keyalgorithm=self.keyalgorithm)
        # rfc2136 ignores deleting an rr that does not exist
        update.delete(domain, dns.rdata.from_text(dns.rdataclass.IN, dns.rdatatype.from_text(rtype), value))
        log('Deleting \'{} IN {} "{}"\' from {}'.format(domain, rtype, value, nameserverip))
        self._send_update(update, nameserverip)
