"""Mutation sites: scanning, single-file application and schemata."""

from mutagraph.mutation.applier import MutationApplier, MutationHandle, recover_backups
from mutagraph.mutation.models import MutationSite, RunReport, SiteResult, Verdict
from mutagraph.mutation.scanner import scan_form, scan_modules
from mutagraph.mutation.schemata import SELECTOR_ENV, SchemaBundle, SchemataCompiler

__all__ = [
    "MutationApplier",
    "MutationHandle",
    "MutationSite",
    "RunReport",
    "SELECTOR_ENV",
    "SchemaBundle",
    "SchemataCompiler",
    "SiteResult",
    "Verdict",
    "recover_backups",
    "scan_form",
    "scan_modules",
]
