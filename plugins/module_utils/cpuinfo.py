"""
turns a /proc/cpuinfo style report into a CpuinfoFeatures record

only the first processor block is read. the report is a list of "key : value" lines, and each
processor block ends with a blank line.
"""

import math
import re
import threading

from dataclasses import dataclass
from typing import Callable

from ansible_collections.unity.node_features.plugins.module_utils.line_reader import (
    LineReader,
    LineReaderOpenError,
)

DEFAULT_CPUINFO_PATH = "/proc/cpuinfo"

# the ISA extensions that become features. the bit index of each name in `isa_mask` is its
# position in the table. older deployments did not report ssse3, so the tables are versioned
# and a cluster can stay on v1 until every node's features are rewritten.
ISA_TABLES = {
    "v1": (
        "sse",
        "sse2",
        "sse4_1",
        "sse4_2",
        "avx",
        "avx2",
        "avx512f",
        "avx512dq",
        "avx512cd",
        "avx512bw",
        "avx512vl",
        "avx512_vnni",
    ),
    "v2": (
        "sse",
        "sse2",
        "ssse3",
        "sse4_1",
        "sse4_2",
        "avx",
        "avx2",
        "avx512f",
        "avx512dq",
        "avx512cd",
        "avx512bw",
        "avx512vl",
        "avx512_vnni",
    ),
}
DEFAULT_ISA_TABLE = "v2"

FLAGS_DELIMITERS = " \t"
# "Gold " or "EPYC " lead-ins are part of the model name when they are present
MODEL_NAME_LEADINS = ["Gold ", "EPYC "]
MODEL_NAME_REGEX = re.compile(r"[A-Za-z0-9][A-Za-z-]*[0-9][A-Za-z0-9-]*")
MODEL_NAME_VERSION_REGEX = re.compile(r" v[0-9]+")
CACHE_SIZE_REGEX = re.compile(r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
CACHE_UNIT_TO_KB = {"G": 1024.0 * 1024.0, "M": 1024.0, "K": 1.0, "B": 1 / 1024.0}


def get_isa_table(name: str) -> tuple[str, ...]:
    try:
        return ISA_TABLES[name]
    except KeyError as e:
        raise ValueError(f'unknown ISA table "{name}". valid tables: {list(ISA_TABLES)}') from e


@dataclass
class CpuinfoFeatures:
    vendor: str | None = None
    model: str | None = None
    cache_kb: int = 0
    isa_mask: int = 0
    isa_names: tuple[str, ...] = ISA_TABLES[DEFAULT_ISA_TABLE]

    def reset(self) -> "CpuinfoFeatures":
        self.vendor = None
        self.model = None
        self.cache_kb = 0
        self.isa_mask = 0
        return self

    def isa_flags(self) -> list[str]:
        return [name for i, name in enumerate(self.isa_names) if self.isa_mask & (1 << i)]

    def as_dict(self) -> dict:
        return {
            "vendor": self.vendor,
            "model": self.model,
            "cache_kb": self.cache_kb,
            "isa": self.isa_flags(),
        }


def contains_token(haystack: str, needle: str, delimiters: str = FLAGS_DELIMITERS) -> bool:
    """
    True if `needle` occurs in `haystack` as a whole token, bounded on both sides by
    a character from `delimiters` or by the ends of the string
    contains_token("sse sse2", "sse2") -> True
    contains_token("ssse3 sse2", "sse") -> False
    the leading boundary is checked too, unlike a trailing-only check, so "misalignsse" does not
    contain "sse" and "ISA::avx2" does not contain "avx2"
    """
    if not haystack or not needle:
        return False
    start = 0
    while (found := haystack.find(needle, start)) >= 0:
        end = found + len(needle)
        preceded = found == 0 or haystack[found - 1] in delimiters
        followed = end == len(haystack) or haystack[end] in delimiters
        if preceded and followed:
            return True
        start = found + 1
    return False


def parse_verbatim(setter: Callable[[CpuinfoFeatures, str], None]):
    "build an extractor that stores the value as-is using `setter`"

    def _parse(features: CpuinfoFeatures, text: str) -> bool:
        setter(features, text)
        return True

    return _parse


def _set_vendor(features: CpuinfoFeatures, text: str) -> None:
    features.vendor = text


def parse_cache_size(features: CpuinfoFeatures, text: str) -> bool:
    """
    "8192 KB" -> 8192
    "8 MB" -> 8192
    "1.5 M" -> 1536
    "8388608 B" -> 8192
    a second "B" after the unit is optional. anything else after the unit is an error
    """
    match = CACHE_SIZE_REGEX.match(text)
    if match is None:
        return False
    value = float(match.group(0))
    if not math.isfinite(value):
        return False
    rest = text[match.end() :].lstrip()
    unit = rest[:1].upper()
    if unit in CACHE_UNIT_TO_KB:
        value *= CACHE_UNIT_TO_KB[unit]
        # a bare "B" means bytes, and it doubles as the optional trailing "B"
        if unit != "B":
            rest = rest[1:]
    if rest not in ["", "B", "b"] or not math.isfinite(value):
        return False
    features.cache_kb = max(int(value), 0)
    return True


def _match_model_name(text: str) -> str | None:
    """
    the model name field is marketing text with no fixed format. look for a token which
    starts with a letter or digit, continues with letters and dashes, then has a digit,
    then continues with letters, digits and dashes:
        (Gold |EPYC )?[A-Za-z0-9][A-Za-z-]*[0-9][A-Za-z0-9-]*( v[0-9]+)?
    when a lead-in is present the token must follow it immediately and the version suffix is
    not considered
    """
    for leadin in MODEL_NAME_LEADINS:
        leadin_start = text.find(leadin)
        if leadin_start < 0:
            continue
        if match := MODEL_NAME_REGEX.match(text, leadin_start + len(leadin)):
            return text[leadin_start : match.end()]
        # only the first lead-in found is considered
        break
    match = MODEL_NAME_REGEX.search(text)
    if match is None:
        return None
    end = match.end()
    if version := MODEL_NAME_VERSION_REGEX.match(text, end):
        end = version.end()
    return text[match.start() : end]


def parse_model_name(features: CpuinfoFeatures, text: str) -> bool:
    """
    "Intel(R) Xeon(R) Gold 6248R CPU @ 3.00GHz" -> "Gold_6248R"
    "AMD EPYC 7452 32-Core Processor" -> "EPYC_7452"
    "Intel(R) Xeon(R) CPU E5-2680 v4 @ 2.40GHz" -> "E5-2680_v4"
    """
    model = _match_model_name(text)
    if model is None:
        return False
    features.model = model.replace(" ", "_")
    return True


def parse_flags(features: CpuinfoFeatures, text: str) -> bool:
    "a later flags line replaces the mask from an earlier one"
    features.isa_mask = 0
    for i, name in enumerate(features.isa_names):
        if contains_token(text, name, FLAGS_DELIMITERS):
            features.isa_mask |= 1 << i
    return True


@dataclass(frozen=True)
class FieldParser:
    keyword: str
    extract: Callable[[CpuinfoFeatures, str], bool]

    def matches(self, keyword: str) -> bool:
        return len(keyword) == len(self.keyword) and keyword.lower() == self.keyword.lower()


FIELD_PARSERS = (
    FieldParser("cache size", parse_cache_size),
    FieldParser("flags", parse_flags),
    FieldParser("model name", parse_model_name),
    FieldParser("vendor_id", parse_verbatim(_set_vendor)),
)


def lookup_parser(keyword: str) -> FieldParser | None:
    for parser in FIELD_PARSERS:
        if parser.matches(keyword):
            return parser
    return None


def parse_line(features: CpuinfoFeatures, line: str) -> bool:
    """
    "model name\t: AMD EPYC 7452 32-Core Processor" -> parse_model_name(features, "AMD EPYC ...")
    returns False if the line is malformed, the keyword is unknown, or the extractor rejects it
    """
    line = line.lstrip()
    if not line:
        return False
    keyword, separator, value = line.partition(":")
    if not separator:
        return False
    parser = lookup_parser(keyword.rstrip())
    if parser is None:
        return False
    return parser.extract(features, value.lstrip())


def parse_file(
    path: str = DEFAULT_CPUINFO_PATH,
    chunk_size: int = 0,
    isa_table: str = DEFAULT_ISA_TABLE,
    log: Callable[[str], None] | None = None,
) -> CpuinfoFeatures:
    """
    parse the first processor block of `path`. stops at the first blank line.
    raises LineReaderError if the file can't be opened or read. a line that fails to parse is
    skipped, and the record just doesn't get that field
    """
    features = CpuinfoFeatures(isa_names=get_isa_table(isa_table))
    with LineReader(path, chunk_size) as reader:
        for line in reader:
            if not line:
                break
            if not parse_line(features, line) and log is not None:
                log(f'cpuinfo: ignoring line from "{path}": "{line}"')
    return features


class NodeFeaturesState:
    """
    process-wide cached CpuinfoFeatures. the file is parsed the first time it is requested and
    the result is kept until `reset` is called (reconfiguration). if the file can't be opened,
    an empty record is returned and the next request tries again.
    the cpuinfo_features_facts module reads cpuinfo through this.
    """

    def __init__(
        self,
        path: str = DEFAULT_CPUINFO_PATH,
        isa_table: str = DEFAULT_ISA_TABLE,
        chunk_size: int = 0,
    ):
        self.path = path
        self.isa_table = isa_table
        self.chunk_size = chunk_size
        self._lock = threading.Lock()
        self._features = None

    @property
    def is_initialized(self) -> bool:
        return self._features is not None

    def get(self, log: Callable[[str], None] | None = None) -> CpuinfoFeatures:
        with self._lock:
            if self._features is None:
                try:
                    self._features = parse_file(
                        self.path, chunk_size=self.chunk_size, isa_table=self.isa_table, log=log
                    )
                except LineReaderOpenError as e:
                    if log is not None:
                        log(str(e))
                    return CpuinfoFeatures(isa_names=get_isa_table(self.isa_table))
            return self._features

    def reset(self) -> None:
        with self._lock:
            if self._features is not None:
                self._features.reset()
            self._features = None
