"""
Transition smoothing between two personas.

Rewrites the outgoing prompt so the jump from one persona to another reads
as a continuation of the conversation, and estimates how noticeable the
change will be.
"""

from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ..config.switching import TransitionConfig, TransitionTiming
from ..errors import PersonaSwitchError
from ..obs.logging import get_logger
from ..obs.tracing import Tracer, get_tracer, trace_call
from .collaborators import PersonaStore
from .lexicons import (
    CORE_TRANSITION_TRAITS,
    DEFAULT_TRAIT_PRIORITIES,
    TRAIT_HIERARCHIES,
    is_high_impact,
)
from . import text as textutil
from .models import Message, PersonaDefinition, Trait, clamp01

logger = get_logger("persona_core")

TRANSITION_TYPES: Tuple[str, ...] = ("seamless", "gradual", "bridged", "explicit")
APPROACH_IMPACT_FACTOR: Dict[str, float] = {"seamless": 0.5, "gradual": 0.7, "bridged": 0.9, "explicit": 1.2}

TRANSITION_TEMPLATES: Dict[str, str] = {
    "seamless": (
        "You are {persona_name}. {persona_description}\n\n"
        "{context_bridge} {continuity_elements}\n\n"
        "{original_prompt}\n\n"
        "Respond naturally as {persona_name} with your characteristic {communication_style} style, "
        "{tone} tone, and {expertise_level} expertise level."
    ),
    "gradual": (
        "{introduction}\n\n"
        "You are {persona_name}. {persona_description}\n"
        "Ease away from the {previous_persona_name} manner you used so far.\n\n"
        "{context_bridge} {trait_transitions} {continuity_elements}\n\n"
        "{original_prompt}\n\n"
        "Respond as {persona_name}, gradually embodying your traits while maintaining conversation flow."
    ),
    "bridged": (
        "{introduction}\n\n"
        "Transitioning from {previous_persona_name} to the {persona_name} approach:\n"
        "{persona_description}\n\n"
        "{context_bridge}\n"
        "{trait_transitions}\n\n"
        "{original_prompt}\n\n"
        "{continuity_elements} Respond as {persona_name} with appropriate {communication_style} style and {tone} tone."
    ),
    "explicit": (
        "{introduction}\n\n"
        "I am now operating as {persona_name}:\n"
        "{persona_description}\n\n"
        "Key characteristics:\n"
        "{trait_transitions}\n\n"
        "{context_bridge}\n\n"
        "{original_prompt}\n\n"
        "Responding explicitly as {persona_name} with full persona traits active."
    ),
}


@dataclass(frozen=True)
class TraitTransition:
    trait: str
    from_value: Optional[str]
    to_value: str
    transition_type: str  # immediate | phased | gradual | contextual
    bridging_technique: str  # explanation | demonstration | natural_evolution | acknowledgment
    priority: float

    def explanation(self) -> str:
        frm = self.from_value or "unset"
        if self.bridging_technique == "explanation":
            return f"Adjusting {self.trait} from {frm} to {self.to_value} for better assistance"
        if self.bridging_technique == "demonstration":
            return f"Demonstrating {self.to_value} {self.trait} approach"
        if self.bridging_technique == "natural_evolution":
            return f"Naturally evolving to a more {self.to_value} {self.trait}"
        return f"Explicitly switching to {self.to_value} {self.trait}"


@dataclass
class BridgingElements:
    introduction: Optional[str] = None
    context_bridge: List[str] = field(default_factory=list)
    trait_transitions: List[Tuple[str, str]] = field(default_factory=list)
    continuity_elements: List[str] = field(default_factory=list)


@dataclass
class TransitionMetadata:
    transition_type: str
    notification_approach: str  # seamless | acknowledged | explicit
    intensity: float
    distance: float
    smoothed_traits: List[str] = field(default_factory=list)
    estimated_user_impact: float = 0.0
    smoothing_quality: float = 0.0
    confidence: float = 0.0
    potential_issues: List[str] = field(default_factory=list)


@dataclass
class SmoothTransitionResult:
    smoothed_prompt: str
    bridging_elements: BridgingElements
    transition_metadata: TransitionMetadata
    user_message: Optional[str] = None
    smoothed: bool = True


@dataclass
class ConversationStats:
    """Coarse conversation facts used to tune a transition."""
    message_count: int = 0
    duration_seconds: float = 0.0
    user_engagement: Optional[str] = None  # high | medium | low
    topic: Optional[str] = None


@dataclass
class TraitChangePreview:
    trait: str
    from_value: Optional[str]
    to_value: str
    change_impact: str  # low | medium | high
    user_visibility: str  # subtle | noticeable | obvious


@dataclass
class TransitionPreview:
    distance: float
    recommended_config: TransitionConfig
    trait_changes: List[TraitChangePreview]
    continuity_impact: float
    user_experience_impact: float
    effectiveness_gain: float
    recommendations: List[str]


def trait_distance(a: Optional[Trait], b: Trait) -> float:
    """Distance in [0, 1] between two values of the same trait."""
    if a is None:
        return 1.0
    if a.value == b.value:
        return 0.0
    hierarchy = TRAIT_HIERARCHIES.get(b.name)
    if hierarchy and a.value in hierarchy and b.value in hierarchy:
        return abs(hierarchy.index(a.value) - hierarchy.index(b.value)) / (len(hierarchy) - 1)
    return 1.0


def persona_distance(src: PersonaDefinition, dst: PersonaDefinition) -> float:
    """
    Weighted trait distance from `src` to `dst`.

    Averages distance x target weight over the target's traits, adds 0.3
    when categories differ, and clamps to [0, 1].
    """
    category = 0.3 if src.category != dst.category else 0.0
    if not dst.traits:
        return clamp01(category)
    total = sum(trait_distance(src.get_trait(t.name), t) * t.weight for t in dst.traits)
    return clamp01(total / len(dst.traits) + category)


def transition_type_for(value: float) -> str:
    if value < 0.3:
        return "seamless"
    if value < 0.6:
        return "gradual"
    if value < 0.8:
        return "bridged"
    return "explicit"


class TransitionSmoother:
    """
    Creates smooth persona transitions.

    Usage:
        smoother = TransitionSmoother(store)
        config = await smoother.optimize_transition_config("casual", "coder", ConversationStats(message_count=4))
        result = await smoother.create_smooth_transition("casual", "coder", prompt, messages, config)
        if result.user_message:
            show(result.user_message)
    """

    def __init__(self, store: PersonaStore, tracer: Optional[Tracer] = None):
        self.store = store
        self.tracer = tracer or get_tracer()

    @trace_call("smoother.create_smooth_transition")
    async def create_smooth_transition(
        self,
        from_id: str,
        to_id: str,
        original_prompt: str,
        recent_messages: Sequence[Message],
        config: Optional[TransitionConfig] = None,
    ) -> SmoothTransitionResult:
        """
        Build the bridged prompt for a switch from `from_id` to `to_id`.

        A failed persona lookup yields an unsmoothed result carrying the
        original prompt; it is logged, not raised.
        """
        config = config or TransitionConfig()
        try:
            src = await self.store.find_one(from_id)
            dst = await self.store.find_one(to_id)
        except PersonaSwitchError as e:
            logger.error(f"Failed to create smooth transition: {e}", extra={"from_persona": from_id, "to_persona": to_id})
            return SmoothTransitionResult(
                smoothed_prompt=original_prompt,
                bridging_elements=BridgingElements(),
                transition_metadata=TransitionMetadata(
                    transition_type="seamless",
                    notification_approach="seamless",
                    intensity=config.intensity,
                    distance=0.0,
                    potential_issues=[str(e)],
                ),
                smoothed=False,
            )

        distance = persona_distance(src, dst)
        ttype = self._select_transition_type(distance, config)
        if ttype == "explicit":
            approach = "explicit"
        elif config.acknowledge_transition or ttype == "bridged":
            approach = "acknowledged"
        else:
            approach = "seamless"

        strategies = self._trait_strategies(src, dst, config, ttype, approach)
        bridging = self._bridging_elements(strategies, recent_messages, config, ttype, approach)
        prompt = self._render_prompt(original_prompt, src, dst, bridging, config, ttype)
        quality, confidence, issues = self._assess_quality(strategies, bridging, config, ttype, distance)

        user_message: Optional[str] = None
        if approach == "explicit":
            user_message = f"I'm now switching to my {dst.name} personality to better assist you."
        elif approach == "acknowledged":
            user_message = "Adapting my approach to better help with your current needs."

        metadata = TransitionMetadata(
            transition_type=ttype,
            notification_approach=approach,
            intensity=config.intensity,
            distance=distance,
            smoothed_traits=[s.trait for s in strategies],
            estimated_user_impact=self._user_impact(strategies, ttype),
            smoothing_quality=quality,
            confidence=confidence,
            potential_issues=issues,
        )
        logger.info(
            "Smooth transition created",
            extra={"from_persona": from_id, "to_persona": to_id, "confidence": confidence, "tags": [ttype, approach]},
        )
        return SmoothTransitionResult(
            smoothed_prompt=prompt,
            bridging_elements=bridging,
            transition_metadata=metadata,
            user_message=user_message,
        )

    async def optimize_transition_config(
        self,
        from_id: str,
        to_id: str,
        stats: Optional[ConversationStats] = None,
    ) -> TransitionConfig:
        """Tune a transition config to the distance between two personas."""
        try:
            src = await self.store.find_one(from_id)
            dst = await self.store.find_one(to_id)
        except PersonaSwitchError as e:
            logger.warning(f"Falling back to default transition config: {e}", extra={"from_persona": from_id, "to_persona": to_id})
            return TransitionConfig()

        distance = persona_distance(src, dst)
        approach = transition_type_for(distance)

        intensity = distance * 0.7
        if stats is not None:
            if stats.message_count > 10:
                intensity *= 0.8
            if stats.user_engagement == "high":
                intensity *= 1.2
            elif stats.user_engagement == "low":
                intensity *= 0.7
        intensity = max(0.1, min(1.0, intensity))

        priority = [
            name for name in CORE_TRANSITION_TRAITS
            if src.get_trait(name) and dst.get_trait(name) and src.get_trait_value(name) != dst.get_trait_value(name)
        ]
        return TransitionConfig(
            intensity=round(intensity, 4),
            acknowledge_transition=distance > 0.7 or approach == "explicit",
            approach=approach,
            priority_traits=priority,
            maintain_continuity=True,
            timing=TransitionTiming(
                preparation_messages=max(1, min(3, math.ceil(distance * 2))),
                stabilization_messages=max(1, min(5, math.ceil(distance * 3))),
            ),
        )

    async def preview_transition(
        self,
        from_id: str,
        to_id: str,
        config: Optional[TransitionConfig] = None,
    ) -> TransitionPreview:
        """
        Describe a transition without building a prompt.

        Raises:
            PersonaNotFound: Unknown persona id
        """
        src = await self.store.find_one(from_id)
        dst = await self.store.find_one(to_id)
        config = config or await self.optimize_transition_config(from_id, to_id)
        distance = persona_distance(src, dst)
        ttype = self._select_transition_type(distance, config)
        approach = "explicit" if ttype == "explicit" else ("acknowledged" if config.acknowledge_transition or ttype == "bridged" else "seamless")
        strategies = self._trait_strategies(src, dst, config, ttype, approach)

        changes: List[TraitChangePreview] = []
        for s in strategies:
            if is_high_impact(s.from_value or "", s.to_value):
                impact = "high"
            elif s.priority > 0.7:
                impact = "medium"
            else:
                impact = "low"
            if ttype == "explicit":
                visibility = "obvious"
            elif ttype == "bridged" or impact == "high" or config.intensity > 0.8:
                visibility = "noticeable"
            else:
                visibility = "subtle"
            changes.append(TraitChangePreview(s.trait, s.from_value, s.to_value, impact, visibility))

        high = sum(1 for c in changes if c.change_impact == "high")
        continuity = high / max(len(changes), 1)
        if ttype == "explicit":
            continuity *= 1.5
        if config.intensity > 0.8:
            continuity *= 1.3
        continuity = clamp01(continuity)
        ux = clamp01(sum(1 for c in changes if c.user_visibility in ("noticeable", "obvious")) / 5)
        improved = sum(1 for t in dst.traits if src.get_trait(t.name) is None or t.weight > src.get_trait_weight(t.name))
        gain = clamp01(improved / max(len(dst.traits), 1))

        recs: List[str] = []
        if continuity > 0.7:
            recs.append("Consider a more gradual approach to maintain conversation flow")
        if ux > 0.6:
            recs.append("High user visibility; consider acknowledging the transition")
        if gain > 0.8:
            recs.append("High effectiveness gain expected; transition is recommended")
        if high > 2:
            recs.append("Multiple high-impact trait changes; consider a phased transition")

        return TransitionPreview(
            distance=distance,
            recommended_config=config,
            trait_changes=changes,
            continuity_impact=continuity,
            user_experience_impact=ux,
            effectiveness_gain=gain,
            recommendations=recs,
        )

    # ------------------------------------------------------------------

    def _select_transition_type(self, distance: float, config: TransitionConfig) -> str:
        by_distance = transition_type_for(max(config.intensity, distance))
        # The configured approach acts as a floor
        return TRANSITION_TYPES[max(TRANSITION_TYPES.index(by_distance), TRANSITION_TYPES.index(config.approach))]

    def _trait_strategies(
        self,
        src: PersonaDefinition,
        dst: PersonaDefinition,
        config: TransitionConfig,
        ttype: str,
        approach: str,
    ) -> List[TraitTransition]:
        strategies: List[TraitTransition] = []
        for to_trait in dst.traits:
            from_value = src.get_trait_value(to_trait.name)
            if from_value == to_trait.value:
                continue

            if config.intensity > 0.8:
                kind = "immediate"
            elif to_trait.name in config.priority_traits:
                kind = "phased" if config.intensity > 0.6 else "gradual"
            else:
                kind = "contextual"

            if ttype == "explicit":
                technique = "acknowledgment"
            elif is_high_impact(from_value or "", to_trait.value):
                technique = "explanation" if approach != "seamless" else "natural_evolution"
            else:
                technique = "demonstration"

            strategies.append(TraitTransition(
                trait=to_trait.name,
                from_value=from_value,
                to_value=to_trait.value,
                transition_type=kind,
                bridging_technique=technique,
                priority=_trait_priority(to_trait.name, config.priority_traits),
            ))
        strategies.sort(key=lambda s: (-s.priority, s.trait))
        return strategies

    def _bridging_elements(
        self,
        strategies: List[TraitTransition],
        recent_messages: Sequence[Message],
        config: TransitionConfig,
        ttype: str,
        approach: str,
    ) -> BridgingElements:
        bridging = BridgingElements()
        if config.maintain_continuity and recent_messages:
            bridging.context_bridge = ["Building on our previous discussion", "Continuing with your request"]
        bridging.trait_transitions = [(s.trait, s.explanation()) for s in strategies[:3]]
        if ttype != "explicit":
            bridging.continuity_elements = ["Maintaining our conversation flow", "Adapting my approach to better assist you"]
        if approach != "seamless":
            bridging.introduction = (
                f"I'm adjusting my approach to better help with your {_infer_topic(recent_messages)} needs."
            )
        return bridging

    def _render_prompt(
        self,
        original_prompt: str,
        src: PersonaDefinition,
        dst: PersonaDefinition,
        bridging: BridgingElements,
        config: TransitionConfig,
        ttype: str,
    ) -> str:
        template = config.custom_transition_template or TRANSITION_TEMPLATES[ttype]
        variables: Dict[str, str] = {t.name: t.value for t in dst.traits}
        variables.update({
            "original_prompt": original_prompt,
            "persona_name": dst.name,
            "persona_description": dst.description,
            "previous_persona_name": src.name,
            "introduction": bridging.introduction or "",
            "context_bridge": ". ".join(bridging.context_bridge),
            "trait_transitions": ". ".join(expl for _, expl in bridging.trait_transitions),
            "continuity_elements": ". ".join(bridging.continuity_elements),
            "transition_intensity": f"{config.intensity:.2f}",
        })
        rendered = textutil.fill_slots(template, variables, missing=lambda name: name.replace("_", " "))
        return "\n".join(line.rstrip() for line in rendered.strip().splitlines())

    def _assess_quality(
        self,
        strategies: List[TraitTransition],
        bridging: BridgingElements,
        config: TransitionConfig,
        ttype: str,
        distance: float,
    ) -> Tuple[float, float, List[str]]:
        quality = 0.7
        confidence = 0.8
        issues: List[str] = []

        high = [s for s in strategies if is_high_impact(s.from_value or "", s.to_value)]
        if len(high) > 3:
            quality -= 0.2
            issues.append("Multiple high-impact trait transitions may affect conversation flow")
        if not bridging.context_bridge and config.maintain_continuity:
            quality -= 0.15
            issues.append("Limited context bridging for continuity maintenance")
        if config.intensity > 0.8 and ttype == "seamless":
            quality -= 0.1
            confidence -= 0.1
            issues.append("High intensity may conflict with seamless approach")
        if len(strategies) <= 5 and config.priority_traits:
            quality += 0.1
        if distance > 0.6 and ttype in ("bridged", "explicit"):
            quality += 0.05
        return clamp01(quality), clamp01(confidence), issues

    def _user_impact(self, strategies: List[TraitTransition], ttype: str) -> float:
        impact = sum(0.3 if is_high_impact(s.from_value or "", s.to_value) else 0.1 for s in strategies)
        return clamp01(impact * APPROACH_IMPACT_FACTOR[ttype])


def _trait_priority(name: str, priority_traits: Sequence[str]) -> float:
    if name in priority_traits:
        return 1.0 - priority_traits.index(name) / len(priority_traits)
    return DEFAULT_TRAIT_PRIORITIES.get(name, 0.1)


def _infer_topic(messages: Sequence[Message]) -> str:
    recent = " ".join(m.content for m in list(messages)[-3:]).lower()
    if "code" in recent or "programming" in recent:
        return "technical"
    if "creative" in recent or "design" in recent:
        return "creative"
    if "business" in recent or "professional" in recent:
        return "professional"
    return "current"
