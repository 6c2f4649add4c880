#!/usr/bin/env python
# -*- coding: utf-8 -*-

# providers.script - dns provider delegating record changes to external scripts
# Copyright (c) The dnscertmgr Authors, 2026.
# available under the ISC license, see LICENSE

import subprocess

from dnscertmgr.providers.abstract import AbstractDNSProvider
from dnscertmgr.tools import log

DEFAULT_SCRIPT_TIMEOUT = 60  # seconds


class DNSProvider(AbstractDNSProvider):
    """Runs ``<script> <type> <name> <value>`` to add or delete a record.

    The scripts have to treat an already existing record (add) and a
    missing record (delete) as success.
    """

    def __init__(self, config):
        AbstractDNSProvider.__init__(self, config)
        self.create_script = config.get("script_create")
        self.delete_script = config.get("script_delete")
        if not self.create_script:
            raise ValueError("script dns provider requires 'script_create' in config")
        if not self.delete_script:
            raise ValueError("script dns provider requires 'script_delete' in config")
        self.script_timeout = int(config.get("script_timeout", DEFAULT_SCRIPT_TIMEOUT))

    def _run(self, script, rtype, name, value):
        try:
            subprocess.run([script, rtype, name, value], check=True, timeout=self.script_timeout,
                           stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
        except subprocess.CalledProcessError as e:
            output = e.output.decode('utf-8', 'replace') if e.output else ''
            raise ValueError("Script {0} failed ({1}): {2}".format(script, e.returncode, output.strip()))
        except subprocess.TimeoutExpired:
            raise ValueError("Script {0} timed out after {1} seconds".format(script, self.script_timeout))

    def add_record(self, rtype, name, value):
        log('Adding \'{} IN {} "{}"\' via {}'.format(name, rtype, value, self.create_script))
        self._run(self.create_script, rtype, name, value)

    def delete_record(self, rtype, name, value):
        log('Deleting \'{} IN {} "{}"\' via {}'.format(name, rtype, value, self.delete_script))
        self._run(self.delete_script, rtype, name, value)
