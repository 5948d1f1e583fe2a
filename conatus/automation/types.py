"""
Conatus Automation Types

Core dataclasses for workflow definitions, triggers and execution outcomes.

Every instruction family (values, conditions, logic blocks, initialization
steps, transformations, triggers) is a closed set of frozen dataclasses.
Definitions arrive as JSON from the automation builder and are parsed with the
``parse_*`` functions; unrecognised type tags become ``Unknown*`` variants so
that the failure surfaces when (and only if) the instruction is reached.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Union


# === Undefined sentinel ===


class _Undefined:
    """Marker for a reference that resolved to nothing."""

    _instance: Optional["_Undefined"] = None

    def __new__(cls) -> "_Undefined":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __copy__(self) -> "_Undefined":
        return self

    def __deepcopy__(self, memo: Dict[int, Any]) -> "_Undefined":
        return self


UNDEFINED = _Undefined()


def is_missing(value: Any) -> bool:
    """True for the undefined sentinel and for None."""
    return value is UNDEFINED or value is None


# === Enums ===


class ErrorHandling(str, Enum):
    """Per-block error policy."""
    PROPAGATE = "propagate"
    CONTINUE = "continue"
    RETURN_EARLY = "returnEarly"

    @classmethod
    def parse(cls, raw: Any) -> "ErrorHandling":
        """Parse a policy, accepting the legacy ``return`` spelling."""
        if isinstance(raw, ErrorHandling):
            return raw
        if raw in ("return", "return_early", "returnEarly"):
            return cls.RETURN_EARLY
        if raw == "continue":
            return cls.CONTINUE
        return cls.PROPAGATE


class OutcomeStatus(str, Enum):
    """Final status of one workflow run."""
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


class TriggerCategory(str, Enum):
    """Categories of contextual triggers."""
    TIME = "time"
    LOCATION = "location"
    DEVICE = "device"
    BEHAVIORAL = "behavioral"


# === Values ===


@dataclass(frozen=True)
class LiteralValue:
    """A constant; containers are resolved element-wise."""
    value: Any = None


@dataclass(frozen=True)
class VariableRef:
    """Reference to an execution variable."""
    name: str


@dataclass(frozen=True)
class ResultRef:
    """Reference to a named block result."""
    name: str


@dataclass(frozen=True)
class TriggerRef:
    """Reference to a (dotted) field of the trigger payload."""
    path: str


@dataclass(frozen=True)
class Template:
    """String with ``{{ path }}`` placeholders over the variables map."""
    template: str


@dataclass(frozen=True)
class FunctionCall:
    """Call of a built-in function on resolved arguments."""
    name: str
    args: Tuple[Any, ...] = ()


Value = Union[LiteralValue, VariableRef, ResultRef, TriggerRef, Template, FunctionCall]

VALUE_NODES = (LiteralValue, VariableRef, ResultRef, TriggerRef, Template, FunctionCall)


def parse_value(raw: Any) -> Any:
    """
    Parse a JSON value expression.

    Mappings tagged ``variable``, ``result``, ``trigger``, ``template``,
    ``function`` or ``literal`` become value nodes; other lists and mappings
    are literal containers whose elements are parsed recursively.
    """
    if isinstance(raw, VALUE_NODES):
        return raw

    if isinstance(raw, list):
        return [parse_value(item) for item in raw]

    if isinstance(raw, dict):
        kind = raw.get("type")
        if kind == "variable" and "name" in raw:
            return VariableRef(raw["name"])
        if kind == "result" and "name" in raw:
            return ResultRef(raw["name"])
        if kind == "trigger" and ("field" in raw or "path" in raw):
            return TriggerRef(raw.get("field") or raw.get("path"))
        if kind == "template" and "template" in raw:
            return Template(raw["template"])
        if kind == "function" and ("function" in raw or "name" in raw):
            return FunctionCall(
                name=raw.get("function") or raw.get("name"),
                args=tuple(parse_value(arg) for arg in raw.get("args") or []),
            )
        if kind == "literal" and "value" in raw:
            return LiteralValue(parse_value(raw["value"]))
        return {key: parse_value(value) for key, value in raw.items()}

    return raw


# === Conditions ===


@dataclass(frozen=True)
class Equals:
    left: Any
    right: Any


@dataclass(frozen=True)
class NotEquals:
    left: Any
    right: Any


@dataclass(frozen=True)
class GreaterThan:
    left: Any
    right: Any


@dataclass(frozen=True)
class LessThan:
    left: Any
    right: Any


@dataclass(frozen=True)
class Contains:
    container: Any
    item: Any


@dataclass(frozen=True)
class RegexMatch:
    text: Any
    pattern: Any


@dataclass(frozen=True)
class And:
    conditions: Tuple["Condition", ...] = ()


@dataclass(frozen=True)
class Or:
    conditions: Tuple["Condition", ...] = ()


@dataclass(frozen=True)
class Not:
    condition: Optional["Condition"] = None


@dataclass(frozen=True)
class Exists:
    value: Any


@dataclass(frozen=True)
class IsEmpty:
    value: Any


@dataclass(frozen=True)
class UnknownCondition:
    """A condition whose type tag is not recognised."""
    kind: str


Condition = Union[
    Equals, NotEquals, GreaterThan, LessThan, Contains, RegexMatch,
    And, Or, Not, Exists, IsEmpty, UnknownCondition,
]

_COMPARISONS = {
    "equals": Equals,
    "not_equals": NotEquals,
    "greater_than": GreaterThan,
    "less_than": LessThan,
}


def parse_condition(raw: Any) -> Optional[Condition]:
    """Parse a JSON condition; ``None`` stays ``None`` (always true)."""
    if raw is None:
        return None

    if isinstance(raw, Condition.__args__):
        return raw

    if not isinstance(raw, dict):
        return UnknownCondition(kind=type(raw).__name__)

    kind = raw.get("type", "")

    if kind in _COMPARISONS:
        return _COMPARISONS[kind](
            left=parse_value(raw.get("left")),
            right=parse_value(raw.get("right")),
        )
    if kind == "contains":
        return Contains(
            container=parse_value(raw.get("container")),
            item=parse_value(raw.get("item")),
        )
    if kind == "regex_match":
        return RegexMatch(
            text=parse_value(raw.get("text")),
            pattern=parse_value(raw.get("pattern")),
        )
    if kind == "and":
        return And(tuple(parse_condition(c) for c in raw.get("conditions") or []))
    if kind == "or":
        return Or(tuple(parse_condition(c) for c in raw.get("conditions") or []))
    if kind == "not":
        return Not(parse_condition(raw.get("condition")))
    if kind == "exists":
        return Exists(parse_value(raw.get("value")))
    if kind == "is_empty":
        return IsEmpty(parse_value(raw.get("value")))

    return UnknownCondition(kind=str(kind))


# === Actions ===


@dataclass(frozen=True)
class ActionSpec:
    """An external action on one connected service."""
    service_id: str
    action_type: str
    params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionSpec":
        """Create from dictionary."""
        return cls(
            service_id=data.get("service") or data.get("serviceId") or data.get("service_id") or "",
            action_type=data.get("type") or data.get("actionType") or data.get("action_type") or "",
            params={k: parse_value(v) for k, v in (data.get("params") or {}).items()},
        )


# === Transformations ===


@dataclass(frozen=True)
class JsonParse:
    KIND: ClassVar[str] = "json_parse"


@dataclass(frozen=True)
class JsonStringify:
    KIND: ClassVar[str] = "json_stringify"


@dataclass(frozen=True)
class ArrayMap:
    item_transformation: Optional["TransformSpec"] = None
    KIND: ClassVar[str] = "array_map"


@dataclass(frozen=True)
class ArrayFilter:
    condition: Optional[Condition] = None
    KIND: ClassVar[str] = "array_filter"


@dataclass(frozen=True)
class ArrayReduce:
    reducer: Any = None
    initial_value: Any = None
    KIND: ClassVar[str] = "array_reduce"


@dataclass(frozen=True)
class RegexExtract:
    pattern: str = ""
    flags: str = ""
    group: Optional[int] = None
    KIND: ClassVar[str] = "regex_extract"


@dataclass(frozen=True)
class ObjectPick:
    keys: Tuple[str, ...] = ()
    KIND: ClassVar[str] = "object_pick"


@dataclass(frozen=True)
class ObjectOmit:
    keys: Tuple[str, ...] = ()
    KIND: ClassVar[str] = "object_omit"


@dataclass(frozen=True)
class ModelTransform:
    """Transformation delegated to a language model."""
    prompt: str = ""
    provider: Optional[str] = None
    parse_json: bool = False
    KIND: ClassVar[str] = "llm_transform"


@dataclass(frozen=True)
class UnknownTransform:
    kind: str = ""
    KIND: ClassVar[str] = "unknown"


TransformSpec = Union[
    JsonParse, JsonStringify, ArrayMap, ArrayFilter, ArrayReduce,
    RegexExtract, ObjectPick, ObjectOmit, ModelTransform, UnknownTransform,
]


def parse_transform(raw: Any) -> Optional[TransformSpec]:
    """Parse a JSON transformation definition."""
    if raw is None:
        return None

    if isinstance(raw, TransformSpec.__args__):
        return raw

    kind = raw.get("type", "") if isinstance(raw, dict) else ""

    if kind == "json_parse":
        return JsonParse()
    if kind == "json_stringify":
        return JsonStringify()
    if kind == "array_map":
        return ArrayMap(parse_transform(raw.get("itemTransformation") or raw.get("item_transformation")))
    if kind == "array_filter":
        return ArrayFilter(parse_condition(raw.get("condition")))
    if kind == "array_reduce":
        return ArrayReduce(
            reducer=parse_value(raw.get("reducer")),
            initial_value=raw.get("initialValue", raw.get("initial_value")),
        )
    if kind == "regex_extract":
        return RegexExtract(
            pattern=raw.get("pattern", ""),
            flags=raw.get("flags", ""),
            group=raw.get("group"),
        )
    if kind == "object_pick":
        return ObjectPick(_keys(raw.get("keys")))
    if kind == "object_omit":
        return ObjectOmit(_keys(raw.get("keys")))
    if kind == "llm_transform":
        return ModelTransform(
            prompt=raw.get("prompt", ""),
            provider=raw.get("provider"),
            parse_json=bool(raw.get("parseJson", raw.get("parse_json", False))),
        )

    return UnknownTransform(kind=str(kind))


def _keys(raw: Any) -> Tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(str(k) for k in raw)


# === Initialization steps ===


@dataclass(frozen=True)
class SetLiteralStep:
    name: str
    value: Any = None
    KIND: ClassVar[str] = "set_variable"


@dataclass(frozen=True)
class ExtractFromTriggerStep:
    """Copy a trigger field (or dotted path) into a variable."""
    name: str
    source: Optional[str] = None
    json_path: Optional[str] = None
    KIND: ClassVar[str] = "extract_from_trigger"


@dataclass(frozen=True)
class TransformStep:
    name: str
    input: Any = None
    transformation: Optional[TransformSpec] = None
    KIND: ClassVar[str] = "data_transformation"


@dataclass(frozen=True)
class ModelQueryStep:
    """Bind the text output of one model query to a variable."""
    name: str
    prompt: Any = None
    provider: Optional[str] = None
    KIND: ClassVar[str] = "llm_generation"


@dataclass(frozen=True)
class UnknownInitStep:
    kind: str
    name: str = ""
    KIND: ClassVar[str] = "unknown"


InitStep = Union[SetLiteralStep, ExtractFromTriggerStep, TransformStep, ModelQueryStep, UnknownInitStep]


def parse_init_step(raw: Dict[str, Any]) -> InitStep:
    """Parse one JSON initialization step."""
    kind = raw.get("type", "")
    name = raw.get("name", "")

    if kind == "set_variable":
        return SetLiteralStep(name=name, value=parse_value(raw.get("value")))
    if kind == "extract_from_trigger":
        return ExtractFromTriggerStep(
            name=name,
            source=raw.get("source"),
            json_path=raw.get("jsonPath") or raw.get("json_path"),
        )
    if kind == "data_transformation":
        return TransformStep(
            name=name,
            input=parse_value(raw.get("input")),
            transformation=parse_transform(raw.get("transformation")),
        )
    if kind == "llm_generation":
        return ModelQueryStep(
            name=name,
            prompt=parse_value(raw.get("prompt")),
            provider=raw.get("provider"),
        )

    return UnknownInitStep(kind=str(kind), name=name)


# === Logic blocks ===


@dataclass(frozen=True, kw_only=True)
class LogicBlock:
    """Options shared by every logic block."""
    condition: Optional[Condition] = None
    result_name: Optional[str] = None
    error_handling: ErrorHandling = ErrorHandling.PROPAGATE
    terminal: bool = False

    KIND: ClassVar[str] = "block"

    @property
    def block_kind(self) -> str:
        return self.KIND


@dataclass(frozen=True, kw_only=True)
class ActionBlock(LogicBlock):
    action: ActionSpec
    KIND: ClassVar[str] = "action"


@dataclass(frozen=True, kw_only=True)
class ConditionalBlock(LogicBlock):
    if_condition: Optional[Condition] = None
    then_blocks: Tuple[LogicBlock, ...] = ()
    else_blocks: Optional[Tuple[LogicBlock, ...]] = None
    KIND: ClassVar[str] = "conditional"


@dataclass(frozen=True, kw_only=True)
class LoopBlock(LogicBlock):
    items: Any = None
    body: Tuple[LogicBlock, ...] = ()
    item_var: str = "item"
    index_var: str = "index"
    KIND: ClassVar[str] = "loop"


@dataclass(frozen=True, kw_only=True)
class ParallelBlock(LogicBlock):
    actions: Tuple[ActionSpec, ...] = ()
    KIND: ClassVar[str] = "parallel"


@dataclass(frozen=True, kw_only=True)
class SetVariableBlock(LogicBlock):
    name: str
    value: Any = None
    KIND: ClassVar[str] = "set_variable"


@dataclass(frozen=True, kw_only=True)
class ReturnBlock(LogicBlock):
    value: Any = None
    KIND: ClassVar[str] = "return"


@dataclass(frozen=True, kw_only=True)
class UnknownBlock(LogicBlock):
    type_name: str = ""

    @property
    def block_kind(self) -> str:
        return self.type_name or "unknown"


def parse_blocks(raw: Optional[List[Dict[str, Any]]]) -> Tuple[LogicBlock, ...]:
    """Parse a JSON list of logic blocks."""
    return tuple(parse_block(b) for b in raw or [])


def parse_block(raw: Dict[str, Any]) -> LogicBlock:
    """Parse one JSON logic block."""
    if isinstance(raw, LogicBlock):
        return raw

    common = {
        "condition": parse_condition(raw.get("condition")),
        "result_name": raw.get("resultName") or raw.get("result_name"),
        "error_handling": ErrorHandling.parse(raw.get("errorHandling") or raw.get("error_handling")),
        "terminal": raw.get("terminal") is True,
    }
    kind = raw.get("type", "")

    if kind == "action":
        return ActionBlock(action=ActionSpec.from_dict(raw.get("action") or {}), **common)

    if kind == "conditional":
        else_raw = raw.get("else")
        return ConditionalBlock(
            if_condition=parse_condition(raw.get("if")),
            then_blocks=parse_blocks(raw.get("then")),
            else_blocks=parse_blocks(else_raw) if else_raw is not None else None,
            **common,
        )

    if kind == "loop":
        return LoopBlock(
            items=parse_value(raw.get("items")),
            body=parse_blocks(raw.get("body")),
            item_var=raw.get("itemVariable") or raw.get("item_var") or "item",
            index_var=raw.get("indexVariable") or raw.get("index_var") or "index",
            **common,
        )

    if kind == "parallel":
        return ParallelBlock(
            actions=tuple(ActionSpec.from_dict(a) for a in raw.get("actions") or []),
            **common,
        )

    if kind == "set_variable":
        return SetVariableBlock(name=raw.get("name", ""), value=parse_value(raw.get("value")), **common)

    if kind == "return":
        return ReturnBlock(value=parse_value(raw.get("value")), **common)

    return UnknownBlock(type_name=str(kind), **common)


# === Triggers ===


@dataclass(frozen=True)
class TimeTrigger:
    """
    Time-based trigger.

    Subtypes: ``specific_time`` (time), ``time_range`` (start_time, end_time),
    ``recurring`` (schedule, time, days, day_of_month) and ``relative_time``
    (reference, offset).
    """
    subtype: str
    time: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    schedule: Optional[str] = None
    days: Tuple[str, ...] = ()
    day_of_month: Optional[int] = None
    reference: Dict[str, Any] = field(default_factory=dict)
    offset: Dict[str, Any] = field(default_factory=dict)
    CATEGORY: ClassVar[TriggerCategory] = TriggerCategory.TIME


@dataclass(frozen=True)
class LocationTrigger:
    """Geofence trigger on a named place."""
    subtype: str
    location: str = ""
    radius: Optional[float] = None
    CATEGORY: ClassVar[TriggerCategory] = TriggerCategory.LOCATION


@dataclass(frozen=True)
class DeviceTrigger:
    """Trigger on the state of the user's device."""
    subtype: str
    device_type: Optional[str] = None
    platform: Optional[str] = None
    network_type: Optional[str] = None
    battery_level: Optional[Dict[str, Any]] = None  # {"type": "below"|"above", "value": n}
    charging_state: Optional[str] = None  # "charging" | "not_charging"
    CATEGORY: ClassVar[TriggerCategory] = TriggerCategory.DEVICE


@dataclass(frozen=True)
class BehavioralTrigger:
    """Trigger on the user's recent activity history."""
    subtype: str
    pattern: Optional[str] = None
    action_type: Optional[str] = None
    threshold: int = 1
    time_window: str = "24h"
    sequence: Tuple[str, ...] = ()
    ordered: bool = False  # ordered-subsequence instead of contiguous match
    CATEGORY: ClassVar[TriggerCategory] = TriggerCategory.BEHAVIORAL


@dataclass(frozen=True)
class UnknownTrigger:
    category: str
    subtype: str = ""


TriggerSpec = Union[TimeTrigger, LocationTrigger, DeviceTrigger, BehavioralTrigger, UnknownTrigger]

_SUBTYPE_CATEGORY = {
    "specific_time": TriggerCategory.TIME,
    "time_range": TriggerCategory.TIME,
    "recurring": TriggerCategory.TIME,
    "relative_time": TriggerCategory.TIME,
    "enter_location": TriggerCategory.LOCATION,
    "exit_location": TriggerCategory.LOCATION,
    "near_location": TriggerCategory.LOCATION,
    "device_type": TriggerCategory.DEVICE,
    "platform": TriggerCategory.DEVICE,
    "network_type": TriggerCategory.DEVICE,
    "battery_status": TriggerCategory.DEVICE,
    "usage_pattern": TriggerCategory.BEHAVIORAL,
    "frequency_threshold": TriggerCategory.BEHAVIORAL,
    "sequence_detection": TriggerCategory.BEHAVIORAL,
}


def parse_trigger(raw: Any) -> Optional[TriggerSpec]:
    """
    Parse a JSON trigger.

    Accepts ``{"type": "location", "subtype": "enter_location", ...}`` as well
    as the short form ``{"type": "enter_location", ...}``.
    """
    if raw is None:
        return None

    if isinstance(raw, TriggerSpec.__args__):
        return raw

    kind = raw.get("type", "")
    subtype = raw.get("subtype") or ""
    if kind in _SUBTYPE_CATEGORY and not subtype:
        subtype = kind
        kind = _SUBTYPE_CATEGORY[subtype].value

    if kind == TriggerCategory.TIME.value:
        return TimeTrigger(
            subtype=subtype,
            time=raw.get("time"),
            start_time=raw.get("startTime") or raw.get("start_time"),
            end_time=raw.get("endTime") or raw.get("end_time"),
            schedule=raw.get("schedule"),
            days=tuple(str(d).lower() for d in raw.get("days") or []),
            day_of_month=raw.get("dayOfMonth") or raw.get("day_of_month"),
            reference=raw.get("reference") or {},
            offset=raw.get("offset") or {},
        )

    if kind == TriggerCategory.LOCATION.value:
        return LocationTrigger(
            subtype=subtype,
            location=raw.get("location", ""),
            radius=raw.get("radius"),
        )

    if kind == TriggerCategory.DEVICE.value:
        return DeviceTrigger(
            subtype=subtype,
            device_type=raw.get("deviceType") or raw.get("device_type"),
            platform=raw.get("platform"),
            network_type=raw.get("networkType") or raw.get("network_type"),
            battery_level=raw.get("batteryLevel") or raw.get("battery_level"),
            charging_state=raw.get("chargingState") or raw.get("charging_state"),
        )

    if kind == TriggerCategory.BEHAVIORAL.value:
        return BehavioralTrigger(
            subtype=subtype,
            pattern=raw.get("pattern"),
            action_type=raw.get("actionType") or raw.get("action_type"),
            threshold=int(raw.get("threshold", 1)),
            time_window=raw.get("timeWindow") or raw.get("time_window") or "24h",
            sequence=tuple(raw.get("sequence") or []),
            ordered=bool(raw.get("ordered", False)),
        )

    return UnknownTrigger(category=str(kind), subtype=subtype)


# === Context snapshot ===


@dataclass(frozen=True)
class LocationFix:
    latitude: float
    longitude: float
    accuracy: float = 0.0


@dataclass(frozen=True)
class DeviceState:
    type: Optional[str] = None
    platform: Optional[str] = None
    network_type: Optional[str] = None
    battery_level: Optional[float] = None
    charging: Optional[bool] = None


@dataclass(frozen=True)
class ContextSnapshot:
    """What the platform knows about the user at one instant."""
    now: Optional[datetime] = None
    location: Optional[LocationFix] = None
    device: Optional[DeviceState] = None
    calendar_events: Tuple[Dict[str, Any], ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ContextSnapshot":
        """Create from dictionary."""
        now = data.get("now")
        if isinstance(now, str):
            now = datetime.fromisoformat(now)

        location = None
        loc = data.get("location")
        if loc:
            location = LocationFix(
                latitude=float(loc["latitude"]),
                longitude=float(loc["longitude"]),
                accuracy=float(loc.get("accuracy") or 0.0),
            )

        device = None
        dev = data.get("device")
        if dev:
            battery = dev.get("battery") or {}
            device = DeviceState(
                type=dev.get("type"),
                platform=dev.get("platform"),
                network_type=dev.get("networkType") or dev.get("network_type"),
                battery_level=battery.get("level", dev.get("battery_level")),
                charging=battery.get("charging", dev.get("charging")),
            )

        calendar = data.get("calendar") or {}
        events = data.get("calendar_events") or calendar.get("events") or []

        return cls(now=now, location=location, device=device, calendar_events=tuple(events))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (used as trigger data)."""
        result: Dict[str, Any] = {}
        if self.now:
            result["now"] = self.now.isoformat()
        if self.location:
            result["location"] = {
                "latitude": self.location.latitude,
                "longitude": self.location.longitude,
                "accuracy": self.location.accuracy,
            }
        if self.device:
            result["device"] = {
                "type": self.device.type,
                "platform": self.device.platform,
                "networkType": self.device.network_type,
                "battery": {
                    "level": self.device.battery_level,
                    "charging": self.device.charging,
                },
            }
        if self.calendar_events:
            result["calendar"] = {"events": list(self.calendar_events)}
        return result


# === Workflow definition ===


@dataclass(frozen=True)
class WorkflowDefinition:
    """A stored trigger + initialization + logic program."""
    id: str
    owner_id: str = ""
    name: str = ""
    trigger: Optional[TriggerSpec] = None
    initialization: Tuple[InitStep, ...] = ()
    logic: Tuple[LogicBlock, ...] = ()
    enabled: bool = True
    version: int = 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowDefinition":
        """Create from dictionary."""
        return cls(
            id=str(data.get("id", "")),
            owner_id=data.get("ownerId") or data.get("owner_id") or data.get("user_id") or "",
            name=data.get("name", ""),
            trigger=parse_trigger(data.get("trigger")),
            initialization=tuple(parse_init_step(s) for s in data.get("initialization") or []),
            logic=parse_blocks(data.get("logic")),
            enabled=data.get("enabled", True),
            version=int(data.get("version", 1)),
        )

    def validate(self) -> List[str]:
        """Validate workflow definition. Returns list of errors."""
        errors: List[str] = []

        if not self.id:
            errors.append("Workflow id is required")

        if not self.logic:
            errors.append("Workflow must have at least one logic block")

        if isinstance(self.trigger, UnknownTrigger):
            errors.append(f"Unknown trigger type: {self.trigger.category}")

        for step in self.initialization:
            if isinstance(step, UnknownInitStep):
                errors.append(f"Unknown initialization step type: {step.kind}")
            elif not step.name:
                errors.append(f"Initialization step {step.KIND} requires a name")

        _validate_blocks(self.logic, "logic", errors)
        return errors


def _validate_blocks(blocks: Tuple[LogicBlock, ...], path: str, errors: List[str]) -> None:
    for i, block in enumerate(blocks):
        where = f"{path}[{i}]"
        _validate_condition(block.condition, where, errors)

        if isinstance(block, UnknownBlock):
            errors.append(f"{where}: unknown block type: {block.block_kind}")
        elif isinstance(block, ActionBlock):
            _validate_action(block.action, where, errors)
        elif isinstance(block, ConditionalBlock):
            if block.if_condition is None:
                errors.append(f"{where}: conditional requires an 'if' condition")
            _validate_condition(block.if_condition, where, errors)
            _validate_blocks(block.then_blocks, f"{where}.then", errors)
            if block.else_blocks is not None:
                _validate_blocks(block.else_blocks, f"{where}.else", errors)
        elif isinstance(block, LoopBlock):
            if not block.item_var or not block.index_var:
                errors.append(f"{where}: loop variables must be named")
            _validate_blocks(block.body, f"{where}.body", errors)
        elif isinstance(block, ParallelBlock):
            for action in block.actions:
                _validate_action(action, where, errors)
        elif isinstance(block, SetVariableBlock):
            if not block.name:
                errors.append(f"{where}: set_variable requires a name")


def _validate_action(action: ActionSpec, where: str, errors: List[str]) -> None:
    if not action.service_id:
        errors.append(f"{where}: action requires a service")
    if not action.action_type:
        errors.append(f"{where}: action requires a type")


def _validate_condition(condition: Optional[Condition], where: str, errors: List[str]) -> None:
    if isinstance(condition, UnknownCondition):
        errors.append(f"{where}: unknown condition type: {condition.kind}")
    elif isinstance(condition, (And, Or)):
        for child in condition.conditions:
            _validate_condition(child, where, errors)
    elif isinstance(condition, Not):
        _validate_condition(condition.condition, where, errors)


# === Execution outcome ===


@dataclass(frozen=True)
class BranchFailure:
    """Marks a failed branch inside a parallel block's result list."""
    error: str
    error_type: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {"success": False, "error": self.error, "errorType": self.error_type}


def to_jsonable(value: Any) -> Any:
    """Convert resolved values into plain JSON-compatible data."""
    if value is UNDEFINED:
        return None
    if isinstance(value, BranchFailure):
        return value.to_dict()
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass
class ExecutionOutcome:
    """Result of one workflow run."""
    status: OutcomeStatus
    results: Dict[str, Any] = field(default_factory=dict)
    variables: Dict[str, Any] = field(default_factory=dict)
    final_result: Any = None
    error: Optional[str] = None
    last_error: Optional[Dict[str, Any]] = None

    @property
    def success(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @property
    def cancelled(self) -> bool:
        return self.status == OutcomeStatus.CANCELLED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        if self.status == OutcomeStatus.SUCCESS:
            return {
                "success": True,
                "results": to_jsonable(self.results),
                "variables": to_jsonable(self.variables),
                "finalResult": to_jsonable(self.final_result),
            }

        if self.status == OutcomeStatus.CANCELLED:
            return {"success": False, "cancelled": True}

        result: Dict[str, Any] = {"success": False, "error": self.error}
        if self.last_error:
            result["lastError"] = to_jsonable(self.last_error)
        return result
