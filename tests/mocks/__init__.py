"""Test mocks and fixtures for varflow tests."""

from .external_tools import FakeToolRunner, fasta_lengths
from .fixtures import create_test_fasta, create_test_manifest, create_test_reads, create_test_vcf

__all__ = [
    "FakeToolRunner",
    "fasta_lengths",
    "create_test_fasta",
    "create_test_manifest",
    "create_test_reads",
    "create_test_vcf",
]
