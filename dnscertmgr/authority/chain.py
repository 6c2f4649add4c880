#!/usr/bin/env python
# -*- coding: utf-8 -*-

# dnscertmgr - certificate chain parsing and selection
# Copyright (c) The dnscertmgr Authors, 2026.
# available under the ISC license, see LICENSE

from dnscertmgr import tools
from dnscertmgr.authority.acme import CertificateBundle, ChainSelectionError
from dnscertmgr.tools import log


class Chain:
    """A downloaded certificate chain: leaf first, root (or last intermediate) last."""

    def __init__(self, body, blocks, certs):
        self.body = body
        self.blocks = blocks
        self.certs = certs

    @classmethod
    def parse(cls, body):
        blocks = list()
        certs = list()
        for block in tools.split_pem_blocks(body):
            try:
                cert = tools.convert_pem_str_to_cert(block)
            except ValueError as e:
                log("Skipping undecodable PEM block in certificate chain: {}".format(e), warning=True)
                continue
            blocks.append(block)
            certs.append(cert)
        if len(certs) < 1:
            return None
        return cls(body, blocks, certs)

    @property
    def leaf(self):
        return self.certs[0]

    @property
    def root_ca_key_id(self):
        return tools.format_key_id(tools.get_cert_authority_key_id(self.certs[-1]))

    def to_bundle(self, pem_private_key):
        return CertificateBundle(
            signature_algorithm=tools.get_cert_signature_algorithm(self.leaf),
            not_before=tools.format_utc_timestamp(self.leaf.not_valid_before_utc),
            not_after=tools.format_utc_timestamp(self.leaf.not_valid_after_utc),
            pem_cert_body=self.blocks[0] + '\n',
            pem_cert_chain=''.join(block + '\n' for block in self.blocks[1:]),
            pem_cert_body_with_chain=self.body,
            root_ca_key_id=self.root_ca_key_id,
            pem_cert_private_key=pem_private_key,
        )


# @brief keep the chains ending in the requested root (all of them if none is requested)
def filter_chains(chains, root_ca_key_id=None):
    if not root_ca_key_id:
        return list(chains)
    return [chain for chain in chains if chain.root_ca_key_id == root_ca_key_id.upper()]


# @brief select the first downloaded chain matching root_ca_key_id and build the result bundle
# @param bodies the downloaded PEM bundles, the default chain first
def select_chain(bodies, pem_private_key, root_ca_key_id=None):
    chains = [chain for chain in (Chain.parse(body) for body in bodies) if chain is not None]
    matching = filter_chains(chains, root_ca_key_id)
    if len(matching) < 1:
        raise ChainSelectionError("None of the {0} issued chain(s) ({1}) ends in root key id {2}".format(
            len(chains), ', '.join(chain.root_ca_key_id for chain in chains), root_ca_key_id))
    if root_ca_key_id:
        log("Selected certificate chain with root key id {}".format(matching[0].root_ca_key_id))
    return matching[0].to_bundle(pem_private_key)
