#!/usr/bin/python

DOCUMENTATION = r"""
name: cpuinfo_features_facts
short_description: facts module that finds cpuinfo based Slurm features for this machine
description:
  - reads the first processor block of /proc/cpuinfo and renders it as Slurm node features
  - "features look like <TYPE>::<VALUE>, where TYPE is one of VENDOR, MODEL, CACHE, ISA, PCI"
options:
  path:
    description: cpuinfo file to read
    type: str
    default: /proc/cpuinfo
  chunk_size:
    description: read the file this many bytes at a time. values below 128 mean 128
    type: int
    default: 0
  isa_table:
    description:
      - which list of ISA extensions to report
      - v1 does not include ssse3
    type: str
    choices: [v1, v2]
    default: v2
  pci_detection:
    description: also add features for known PCI display devices
    type: bool
    default: false
  pci_sysfs_path:
    description: where to enumerate PCI devices from
    type: str
    default: /sys/bus/pci/devices
  avail_features:
    description: comma separated available features to append to
    type: str
    default: ""
  current_features:
    description: comma separated active features to append to
    type: str
    default: ""
author: unity.node_features maintainers
version_added: 1.0.0
"""

EXAMPLES = r"""
- name: find cpuinfo features
  unity.node_features.cpuinfo_features_facts:

- name: find cpuinfo and GPU features, appended to the existing feature lists
  unity.node_features.cpuinfo_features_facts:
    pci_detection: true
    avail_features: "{{ slurm_features | join(',') }}"
    current_features: "{{ slurm_features | join(',') }}"
"""

RETURN = r"""
cpuinfo:
    description: the fields parsed from cpuinfo
    type: dict
    returned: always
    sample:
      vendor: GenuineIntel
      model: Gold_6248R
      cache_kb: 28160
      isa: [sse, sse2, ssse3, sse4_1, sse4_2, avx, avx2]
cpuinfo_features:
    description: list of slurm features
    type: list
    elements: string
    returned: always
    sample:
      - VENDOR::GenuineIntel
      - MODEL::Gold_6248R
      - CACHE::28160KB
      - ISA::avx2
cpuinfo_node_state:
    description: the given avail_features and current_features with our features appended
    type: dict
    returned: always
    sample:
      avail: "intel,VENDOR::GenuineIntel,MODEL::Gold_6248R"
      current: "intel,VENDOR::GenuineIntel,MODEL::Gold_6248R"
"""

from ansible.module_utils.basic import AnsibleModule

from ansible_collections.unity.node_features.plugins.module_utils.cpuinfo import (
    DEFAULT_CPUINFO_PATH,
    DEFAULT_ISA_TABLE,
    ISA_TABLES,
    CpuinfoFeatures,
    NodeFeaturesState,
)
from ansible_collections.unity.node_features.plugins.module_utils.line_reader import (
    LineReaderError,
)
from ansible_collections.unity.node_features.plugins.module_utils.node_features import (
    node_state,
    render,
    split_tags,
)
from ansible_collections.unity.node_features.plugins.module_utils.pci import (
    DEFAULT_SYSFS_PCI_PATH,
    device_features,
    read_sysfs_devices,
)


def get_cpuinfo_features(_module: AnsibleModule) -> CpuinfoFeatures:
    params = _module.params
    state = NodeFeaturesState(params["path"], params["isa_table"], chunk_size=params["chunk_size"])
    try:
        features = state.get(log=_module.debug)
    except LineReaderError as e:
        _module.fail_json(msg=str(e))
    if not state.is_initialized:
        # no features is better than a node that won't come up
        _module.warn(f'no cpuinfo features will be reported: unable to open "{params["path"]}"')
    return features


def get_pci_features(_module: AnsibleModule) -> str:
    if not _module.params["pci_detection"]:
        return ""
    features = device_features(read_sysfs_devices(_module.params["pci_sysfs_path"]))
    _module.debug(f"PCI features: {features}")
    return features


def main():
    _module = AnsibleModule(
        argument_spec=dict(
            path=dict(type="str", default=DEFAULT_CPUINFO_PATH),
            chunk_size=dict(type="int", default=0),
            isa_table=dict(type="str", choices=list(ISA_TABLES), default=DEFAULT_ISA_TABLE),
            pci_detection=dict(type="bool", default=False),
            pci_sysfs_path=dict(type="str", default=DEFAULT_SYSFS_PCI_PATH),
            avail_features=dict(type="str", default=""),
            current_features=dict(type="str", default=""),
        ),
        supports_check_mode=True,
    )
    features = get_cpuinfo_features(_module)
    pci_features = get_pci_features(_module)
    avail, current = node_state(
        _module.params["avail_features"],
        _module.params["current_features"],
        features,
        extra=pci_features,
    )
    added = render(features, extra=pci_features)
    _module.exit_json(
        changed=False,
        ansible_facts={
            "cpuinfo": features.as_dict(),
            "cpuinfo_features": split_tags(added),
            "cpuinfo_node_state": {"avail": avail or "", "current": current or ""},
        },
    )


if __name__ == "__main__":
    main()
