"""
Reader for pprof sample sets.

Go writes CPU and heap profiles as (usually gzipped) protocol buffers
following ``perftools.profiles.Profile`` from google/pprof's
``profile.proto``. The message classes are built at import time from the
schema below with the protobuf runtime, then decoded profiles are flattened
into a :class:`SampleSet`: a sample-type table plus, per sample, a leaf-first
stack of function names and a value vector.
"""

import gzip
import zlib
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError

from .errors import ProfileFormatError

PACKAGE = "perftools.profiles"
GZIP_MAGIC = b"\x1f\x8b"

_F = descriptor_pb2.FieldDescriptorProto
_INT64 = _F.TYPE_INT64
_UINT64 = _F.TYPE_UINT64
_BOOL = _F.TYPE_BOOL
_STRING = _F.TYPE_STRING
_OPTIONAL = _F.LABEL_OPTIONAL
_REPEATED = _F.LABEL_REPEATED

# (field name, number, type or message name, label)
_SCHEMA = {
    "Profile": [
        ("sample_type", 1, "ValueType", _REPEATED),
        ("sample", 2, "Sample", _REPEATED),
        ("mapping", 3, "Mapping", _REPEATED),
        ("location", 4, "Location", _REPEATED),
        ("function", 5, "Function", _REPEATED),
        ("string_table", 6, _STRING, _REPEATED),
        ("drop_frames", 7, _INT64, _OPTIONAL),
        ("keep_frames", 8, _INT64, _OPTIONAL),
        ("time_nanos", 9, _INT64, _OPTIONAL),
        ("duration_nanos", 10, _INT64, _OPTIONAL),
        ("period_type", 11, "ValueType", _OPTIONAL),
        ("period", 12, _INT64, _OPTIONAL),
        ("comment", 13, _INT64, _REPEATED),
        ("default_sample_type", 14, _INT64, _OPTIONAL),
    ],
    "ValueType": [
        ("type", 1, _INT64, _OPTIONAL),
        ("unit", 2, _INT64, _OPTIONAL),
    ],
    "Sample": [
        ("location_id", 1, _UINT64, _REPEATED),
        ("value", 2, _INT64, _REPEATED),
        ("label", 3, "Label", _REPEATED),
    ],
    "Label": [
        ("key", 1, _INT64, _OPTIONAL),
        ("str", 2, _INT64, _OPTIONAL),
        ("num", 3, _INT64, _OPTIONAL),
        ("num_unit", 4, _INT64, _OPTIONAL),
    ],
    "Mapping": [
        ("id", 1, _UINT64, _OPTIONAL),
        ("memory_start", 2, _UINT64, _OPTIONAL),
        ("memory_limit", 3, _UINT64, _OPTIONAL),
        ("file_offset", 4, _UINT64, _OPTIONAL),
        ("filename", 5, _INT64, _OPTIONAL),
        ("build_id", 6, _INT64, _OPTIONAL),
        ("has_functions", 7, _BOOL, _OPTIONAL),
        ("has_filenames", 8, _BOOL, _OPTIONAL),
        ("has_line_numbers", 9, _BOOL, _OPTIONAL),
        ("has_inline_frames", 10, _BOOL, _OPTIONAL),
    ],
    "Location": [
        ("id", 1, _UINT64, _OPTIONAL),
        ("mapping_id", 2, _UINT64, _OPTIONAL),
        ("address", 3, _UINT64, _OPTIONAL),
        ("line", 4, "Line", _REPEATED),
        ("is_folded", 5, _BOOL, _OPTIONAL),
    ],
    "Line": [
        ("function_id", 1, _UINT64, _OPTIONAL),
        ("line", 2, _INT64, _OPTIONAL),
        ("column", 3, _INT64, _OPTIONAL),
    ],
    "Function": [
        ("id", 1, _UINT64, _OPTIONAL),
        ("name", 2, _INT64, _OPTIONAL),
        ("system_name", 3, _INT64, _OPTIONAL),
        ("filename", 4, _INT64, _OPTIONAL),
        ("start_line", 5, _INT64, _OPTIONAL),
    ],
}


def _build_messages() -> Dict[str, type]:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="benchscope/profile.proto", package=PACKAGE, syntax="proto3")
    for message_name, fields in _SCHEMA.items():
        message = file_proto.message_type.add(name=message_name)
        for name, number, kind, label in fields:
            entry = message.field.add(name=name, number=number, label=label)
            if isinstance(kind, str):
                entry.type = _F.TYPE_MESSAGE
                entry.type_name = f".{PACKAGE}.{kind}"
            else:
                entry.type = kind

    pool = descriptor_pool.DescriptorPool()
    pool.Add(file_proto)
    return {
        name: message_factory.GetMessageClass(pool.FindMessageTypeByName(f"{PACKAGE}.{name}"))
        for name in _SCHEMA
    }


_MESSAGES = _build_messages()
Profile = _MESSAGES["Profile"]


@dataclass(frozen=True)
class ValueType:
    """What one slot of a sample's value vector measures."""
    type: str
    unit: str

    def __str__(self) -> str:
        return f"{self.type}/{self.unit}"


@dataclass
class Sample:
    """One call-stack observation.

    ``stack`` is leaf first: ``stack[0]`` is the function that was executing
    (or allocating) when the sample was taken.
    """
    stack: List[str]
    values: List[int]

    @property
    def leaf(self) -> Optional[str]:
        return self.stack[0] if self.stack else None


@dataclass
class SampleSet:
    """A decoded profile: its value-stream table and its samples."""
    sample_types: List[ValueType]
    samples: List[Sample] = field(default_factory=list)
    duration_nanos: int = 0
    period: int = 0

    def __post_init__(self):
        width = len(self.sample_types)
        for index, sample in enumerate(self.samples):
            if len(sample.values) != width:
                raise ProfileFormatError(
                    f"sample {index} has {len(sample.values)} values, "
                    f"expected {width} ({', '.join(map(str, self.sample_types))})")

    def value_index(self, type_name: str) -> Optional[int]:
        """Return the slot measuring ``type_name`` (e.g. ``"alloc_space"``), if any."""
        for index, value_type in enumerate(self.sample_types):
            if value_type.type == type_name:
                return index
        return None

    def total(self, index: int = 0) -> int:
        return sum(sample.values[index] for sample in self.samples)


def _decode(data: bytes):
    if data[:2] == GZIP_MAGIC:
        try:
            data = gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as exc:
            raise ProfileFormatError("corrupt gzip stream in profile", cause=exc) from exc
    profile = Profile()
    try:
        profile.ParseFromString(data)
    except DecodeError as exc:
        raise ProfileFormatError("not a pprof profile", cause=exc) from exc
    return profile


def parse_profile(data: bytes) -> SampleSet:
    """Decode raw (optionally gzipped) pprof bytes into a SampleSet.

    Frames whose location carries no function information are dropped from
    the stack; the sample's values are kept.

    Raises:
        ProfileFormatError: If the bytes are not a valid profile.
    """
    if not data:
        raise ProfileFormatError("empty profile")
    profile = _decode(data)
    strings = list(profile.string_table)

    def lookup(index: int) -> str:
        if 0 <= index < len(strings):
            return strings[index]
        raise ProfileFormatError(f"string index {index} out of range")

    function_names = {fn.id: lookup(fn.name) for fn in profile.function}
    location_names = {}
    for location in profile.location:
        if location.line and location.line[0].function_id in function_names:
            location_names[location.id] = function_names[location.line[0].function_id]

    samples = []
    for sample in profile.sample:
        stack = [location_names[loc_id] for loc_id in sample.location_id
                 if loc_id in location_names]
        samples.append(Sample(stack=stack, values=list(sample.value)))

    return SampleSet(
        sample_types=[ValueType(lookup(vt.type), lookup(vt.unit)) for vt in profile.sample_type],
        samples=samples,
        duration_nanos=profile.duration_nanos,
        period=profile.period,
    )
