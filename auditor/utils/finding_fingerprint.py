"""
Finding Fingerprint Utility
===========================
Generates stable fingerprints for judge findings.

Finding Signature:
    path + line
    Identifies the same flagged location across iterations, regardless of how
    the judge worded the comment. Used to detect a loop that keeps getting
    flagged on the same lines ("stuck on same issues").
"""
import hashlib
from typing import Iterable, Set

from auditor.models.review import InlineFinding, Review


def generate_finding_signature(finding: InlineFinding) -> str:
    """
    Generate a stable signature for a finding location.

    Parameters
    ----------
    finding : InlineFinding
        The finding to fingerprint.

    Returns
    -------
    str
        Deterministic 16-hex-char signature.
    """
    raw = f"{finding.path.strip()}:{finding.line}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def finding_signatures(review: Review) -> Set[str]:
    """Signatures of every actionable finding in a review."""
    return {
        generate_finding_signature(f) for f in review.inline if f.is_actionable()
    }


def recurring_signatures(reviews: Iterable[Review]) -> Set[str]:
    """
    Locations flagged in every one of the given reviews.

    An empty iterable, or any review without findings, yields an empty set.
    """
    common = None
    for review in reviews:
        sigs = finding_signatures(review)
        common = sigs if common is None else common & sigs
        if not common:
            return set()
    return common or set()
