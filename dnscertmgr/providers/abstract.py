#!/usr/bin/env python
# -*- coding: utf-8 -*-

# abstract - abstract base class for dns providers
# Copyright (c) The dnscertmgr Authors, 2026.
# available under the ISC license, see LICENSE


class AbstractDNSProvider:
    def __init__(self, config):
        self.config = config
        self.dns_ttl = int(config.get("dns_ttl", 60))

    # Publish a record, an already existing identical record counts as success
    def add_record(self, rtype, name, value):
        raise NotImplementedError

    # Remove exactly the record with the given value, a missing record counts as success
    def delete_record(self, rtype, name, value):
        raise NotImplementedError
