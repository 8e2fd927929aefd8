"""
filters for reconciling cpuinfo node features with existing Slurm feature lists

feature lists can be given either as comma separated strings or as lists of strings.
outputs are always comma separated strings, the format that Slurm uses.

ex:
```
Features: "{{ cpuinfo_features | unity.node_features.cpuinfo_node_xlate(Features) }}"
```
"""

from ansible.errors import AnsibleFilterError
from ansible.utils.display import Display

from ansible_collections.unity.node_features.plugins.module_utils.cpuinfo import (
    DEFAULT_ISA_TABLE,
    CpuinfoFeatures,
    contains_token,
    get_isa_table,
)
from ansible_collections.unity.node_features.plugins.module_utils.node_features import (
    DEFAULT_RECONCILE_POLICY,
    TAG_DELIMITER,
    is_owned,
    job_xlate,
    node_xlate,
    render,
)
from ansible_collections.unity.node_features.plugins.plugin_utils.beartype import beartype

display = Display()


@beartype
def _join_if_list(x: list[str] | str | None) -> str | None:
    return TAG_DELIMITER.join(x) if isinstance(x, list) else x


@beartype
def cpuinfo_job_xlate(job_features: str | None) -> str | None:
    "keep only our features from an '&' separated job feature request"
    output = job_xlate(job_features)
    display.debug(f"cpuinfo_job_xlate: {job_features} -> {output}")
    return output


@beartype
def cpuinfo_node_xlate(
    new_features: list[str] | str | None,
    orig_features: list[str] | str | None,
    avail_features: list[str] | str | None = None,
    policy: str = DEFAULT_RECONCILE_POLICY,
) -> str | None:
    "replace our features in orig_features with new_features, keep everything else"
    new = _join_if_list(new_features)
    orig = _join_if_list(orig_features)
    avail = _join_if_list(avail_features)
    display.v(f"cpuinfo_node_xlate: new={new} orig={orig} avail={avail} policy={policy}")
    try:
        return node_xlate(new, orig, avail, policy=policy)
    except ValueError as e:
        raise AnsibleFilterError(str(e)) from e


@beartype
def cpuinfo_is_owned(feature: str, include_pci: bool = True) -> bool:
    return is_owned(feature, include_pci=include_pci)


@beartype
def cpuinfo_contains_token(
    features: list[str] | str | None, feature: str, delimiters: str = TAG_DELIMITER
) -> bool:
    return contains_token(_join_if_list(features), feature, delimiters)


@beartype
def _features_from_facts(cpuinfo: dict, isa_table: str) -> CpuinfoFeatures:
    try:
        isa_names = get_isa_table(isa_table)
    except ValueError as e:
        raise AnsibleFilterError(str(e)) from e
    features = CpuinfoFeatures(
        vendor=cpuinfo.get("vendor"),
        model=cpuinfo.get("model"),
        cache_kb=int(cpuinfo.get("cache_kb") or 0),
        isa_names=isa_names,
    )
    for name in cpuinfo.get("isa") or []:
        if name not in isa_names:
            raise AnsibleFilterError(
                f'ISA extension "{name}" not found in ISA table "{isa_table}"'
            )
        features.isa_mask |= 1 << isa_names.index(name)
    return features


@beartype
def cpuinfo_render(
    cpuinfo: dict,
    extra: list[str] | str | None = None,
    isa_table: str = DEFAULT_ISA_TABLE,
) -> str:
    "render the `cpuinfo` fact from the cpuinfo_features_facts module as a feature string"
    return render(_features_from_facts(cpuinfo, isa_table), _join_if_list(extra))


class FilterModule:
    def filters(self):
        return dict(
            cpuinfo_job_xlate=cpuinfo_job_xlate,
            cpuinfo_node_xlate=cpuinfo_node_xlate,
            cpuinfo_is_owned=cpuinfo_is_owned,
            cpuinfo_contains_token=cpuinfo_contains_token,
            cpuinfo_render=cpuinfo_render,
        )
