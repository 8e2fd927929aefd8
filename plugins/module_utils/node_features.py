"""
set algebra over comma separated Slurm feature strings

features owned by this collection look like "<TYPE>::<VALUE>":
    VENDOR::GenuineIntel
    MODEL::Gold_6248R
    CACHE::28160KB
    ISA::avx2
    PCI::GPU::A100
every other feature belongs to somebody else and is passed through untouched
"""

from ansible_collections.unity.node_features.plugins.module_utils.cpuinfo import (
    CpuinfoFeatures,
    contains_token,
)

TAG_PREFIXES = ["VENDOR::", "MODEL::", "CACHE::", "ISA::"]
PCI_TAG_PREFIX = "PCI::"
TAG_DELIMITER = ","
JOB_FEATURE_DELIMITER = "&"
RECONCILE_POLICIES = ["carry_forward", "available"]
DEFAULT_RECONCILE_POLICY = "carry_forward"


def is_owned(tag: str, include_pci=True) -> bool:
    "case sensitive prefix match"
    prefixes = TAG_PREFIXES + [PCI_TAG_PREFIX] if include_pci else TAG_PREFIXES
    return any(tag.startswith(x) for x in prefixes)


def split_tags(tags: str | None, delimiter=TAG_DELIMITER) -> list[str]:
    "empty tokens are dropped"
    if not tags:
        return []
    return [x for x in tags.split(delimiter) if x]


def render(features: CpuinfoFeatures, extra: str | None = None) -> str:
    """
    VENDOR, MODEL, CACHE, then ISA in table order. empty fields are left out
    `extra` is an already rendered tag string (PCI devices) which goes first
    """
    tags = split_tags(extra)
    if features.vendor:
        tags.append(f"VENDOR::{features.vendor}")
    if features.model:
        tags.append(f"MODEL::{features.model}")
    if features.cache_kb:
        tags.append(f"CACHE::{features.cache_kb}KB")
    tags.extend(f"ISA::{x}" for x in features.isa_flags())
    return TAG_DELIMITER.join(tags)


def append_tags(existing: str | None, add: str | None) -> str | None:
    if not add:
        return existing
    if not existing:
        return add
    return f"{existing}{TAG_DELIMITER}{add}"


def node_state(
    avail_modes: str | None,
    current_mode: str | None,
    features: CpuinfoFeatures,
    extra: str | None = None,
) -> tuple[str | None, str | None]:
    "append this node's rendered features to both the available and the active feature lists"
    add = render(features, extra)
    return append_tags(avail_modes, add), append_tags(current_mode, add)


def job_xlate(job_features: str | None) -> str | None:
    """
    "ISA::avx2&mem512&VENDOR::GenuineIntel" -> "ISA::avx2,VENDOR::GenuineIntel"
    if none of the requested features are ours, the request comes back unchanged
    """
    if not job_features:
        return None
    ours = [x for x in split_tags(job_features, JOB_FEATURE_DELIMITER) if is_owned(x)]
    if not ours:
        return job_features
    return TAG_DELIMITER.join(ours)


def _union_into(output: list[str], tags: list[str]) -> None:
    for tag in tags:
        if not contains_token(TAG_DELIMITER.join(output), tag, TAG_DELIMITER):
            output.append(tag)


def node_xlate(
    new_features: str | None,
    orig_features: str | None,
    avail_features: str | None = None,
    policy: str = DEFAULT_RECONCILE_POLICY,
) -> str | None:
    """
    merge newly detected features into a node's existing feature list

    carry_forward: new U (orig - ours)
    available: same, but one of our features is only kept if it is also in `avail_features`.
        if `avail_features` is empty, nothing is known to be available and this is the same as
        carry_forward

    features that are not ours are never dropped. order is preserved and duplicates are removed
    if nothing new was detected, orig is returned unchanged
    """
    if policy not in RECONCILE_POLICIES:
        raise ValueError(
            f'unknown reconcile policy "{policy}". valid policies: {RECONCILE_POLICIES}'
        )
    if not new_features:
        return orig_features
    new = split_tags(new_features)
    if policy == "available" and avail_features:
        new = [
            x for x in new if not is_owned(x) or contains_token(avail_features, x, TAG_DELIMITER)
        ]
    output = []
    _union_into(output, new)
    if orig_features:
        _union_into(output, [x for x in split_tags(orig_features) if not is_owned(x)])
    return TAG_DELIMITER.join(output)
