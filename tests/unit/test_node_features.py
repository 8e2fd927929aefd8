import pytest

from ansible_collections.unity.node_features.plugins.module_utils.cpuinfo import (
    CpuinfoFeatures,
    parse_file,
)
from ansible_collections.unity.node_features.plugins.module_utils.node_features import (
    append_tags,
    is_owned,
    job_xlate,
    node_state,
    node_xlate,
    render,
    split_tags,
)


@pytest.fixture
def features():
    # ISA::avx, ISA::avx2
    return CpuinfoFeatures("GenuineIntel", "Gold_6248R", 28160, 0b1100000)


@pytest.mark.parametrize(
    "tag",
    ["VENDOR::GenuineIntel", "MODEL::EPYC_7452", "CACHE::512KB", "ISA::avx2", "PCI::GPU::A40"],
)
def test_is_owned(tag):
    assert is_owned(tag)


@pytest.mark.parametrize("tag", ["gpu", "ISAX::avx2", "isa::avx2", " ISA::avx2", "", "intel"])
def test_is_not_owned(tag):
    assert not is_owned(tag)


def test_pci_ownership_is_optional():
    assert not is_owned("PCI::GPU::A40", include_pci=False)
    assert is_owned("ISA::avx2", include_pci=False)


def test_render(features):
    assert render(features) == (
        "VENDOR::GenuineIntel,MODEL::Gold_6248R,CACHE::28160KB,ISA::avx,ISA::avx2"
    )


def test_render_is_idempotent(features):
    assert render(features) == render(features)


def test_render_omits_empty_fields():
    assert render(CpuinfoFeatures()) == ""
    assert render(CpuinfoFeatures(model="EPYC_7452")) == "MODEL::EPYC_7452"
    assert render(CpuinfoFeatures(cache_kb=512, isa_mask=0b1)) == "CACHE::512KB,ISA::sse"


def test_render_extra_goes_first(features):
    features.isa_mask = 0
    assert render(features, "PCI::GPU::A100") == (
        "PCI::GPU::A100,VENDOR::GenuineIntel,MODEL::Gold_6248R,CACHE::28160KB"
    )
    assert render(CpuinfoFeatures(), "PCI::GPU::A100,PCI::GPU::T4") == (
        "PCI::GPU::A100,PCI::GPU::T4"
    )


def test_render_parsed_file(fixture_path):
    features = parse_file(fixture_path("cpuinfo_epyc_7452.txt"))
    assert render(features) == ",".join(
        [
            "VENDOR::AuthenticAMD",
            "MODEL::EPYC_7452",
            "CACHE::512KB",
            "ISA::sse",
            "ISA::sse2",
            "ISA::ssse3",
            "ISA::sse4_1",
            "ISA::sse4_2",
            "ISA::avx",
            "ISA::avx2",
        ]
    )


def test_split_tags():
    assert split_tags(None) == []
    assert split_tags("") == []
    assert split_tags("a,,b") == ["a", "b"]
    assert split_tags("a&b", "&") == ["a", "b"]


def test_append_tags():
    assert append_tags(None, "ISA::sse") == "ISA::sse"
    assert append_tags("", "ISA::sse") == "ISA::sse"
    assert append_tags("gpu", "ISA::sse") == "gpu,ISA::sse"
    assert append_tags("gpu", "") == "gpu"
    assert append_tags(None, None) is None


def test_node_state(features):
    avail, current = node_state("gpu", None, features)
    assert avail == "gpu," + render(features)
    assert current == render(features)


def test_node_state_nothing_detected():
    assert node_state("gpu", "ib", CpuinfoFeatures()) == ("gpu", "ib")


def test_job_xlate():
    assert job_xlate("ISA::avx2&mem512&VENDOR::GenuineIntel") == "ISA::avx2,VENDOR::GenuineIntel"


def test_job_xlate_none_ours_is_unchanged():
    assert job_xlate("mem512&ib") == "mem512&ib"


def test_job_xlate_empty():
    assert job_xlate(None) is None
    assert job_xlate("") is None


def test_node_xlate_carry_forward():
    new = "VENDOR::GenuineIntel,MODEL::Gold_6248R,ISA::avx2"
    orig = "gpu,VENDOR::AuthenticAMD,ISA::avx2,MODEL::EPYC_7452,ib"
    assert node_xlate(new, orig) == "VENDOR::GenuineIntel,MODEL::Gold_6248R,ISA::avx2,gpu,ib"


def test_node_xlate_no_duplicates():
    new = "ISA::avx,ISA::avx,ISA::avx2"
    orig = "gpu,gpu,ib,ISA::avx"
    assert node_xlate(new, orig) == "ISA::avx,ISA::avx2,gpu,ib"


def test_node_xlate_not_ours_is_not_a_substring_match():
    assert node_xlate("ISA::avx2", "avx2") == "ISA::avx2,avx2"


def test_node_xlate_nothing_new():
    assert node_xlate(None, "gpu,ISA::avx") == "gpu,ISA::avx"
    assert node_xlate("", "gpu,ISA::avx") == "gpu,ISA::avx"
    assert node_xlate(None, None) is None


def test_node_xlate_nothing_orig():
    assert node_xlate("ISA::avx,ISA::avx2", None) == "ISA::avx,ISA::avx2"
    assert node_xlate("ISA::avx,ISA::avx2", "") == "ISA::avx,ISA::avx2"


def test_node_xlate_available():
    new = "VENDOR::GenuineIntel,ISA::avx2,ISA::avx512f"
    orig = "gpu,ISA::sse"
    avail = "VENDOR::GenuineIntel,ISA::avx2,gpu"
    assert node_xlate(new, orig, avail, policy="available") == "VENDOR::GenuineIntel,ISA::avx2,gpu"
    # same input, different policy
    assert node_xlate(new, orig, avail) == "VENDOR::GenuineIntel,ISA::avx2,ISA::avx512f,gpu"


def test_node_xlate_available_without_avail_list():
    new = "VENDOR::GenuineIntel,ISA::avx2"
    assert node_xlate(new, "gpu", None, policy="available") == node_xlate(new, "gpu")


def test_node_xlate_bad_policy():
    with pytest.raises(ValueError):
        node_xlate("ISA::avx", "gpu", policy="union")
