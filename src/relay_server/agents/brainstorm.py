"""Multi-agent brainstorm.

A fixed, ordered set of personas answers a topic in turn for up to
``max_rounds`` rounds. Each persona sees only the topic and the answers given
earlier in the current round. A round ends the brainstorm early when the
critic signals consensus. A final synthesis call condenses all answers into
actionable points. No tools are advertised and nothing needs approval.
"""

import logging
from dataclasses import dataclass, field

from relay_server.engine.channel import TurnEmitter
from relay_server.engine.events import (
    BrainstormAgentDone,
    BrainstormComplete,
    BrainstormToken,
    ErrorEvent,
    FinishReason,
    Finished,
    StatusUpdate,
    UsageUpdate,
)
from relay_server.provider import (
    ContentToken,
    ProviderClient,
    ProviderError,
    StreamDecoder,
    UsageReport,
)
from relay_server.services import RateLimiter

logger = logging.getLogger(__name__)

CONSENSUS_PHRASES = ("no major concerns", "looks good", "agree with", "solid approach")
SYNTHESIS_PROMPT = (
    "Synthesize the brainstorming into 3-5 actionable points. Be brief and practical."
)
SYNTHESIS_AGENT = "Synthesis"


@dataclass(frozen=True)
class Persona:
    name: str
    prompt: str


PERSONAS: tuple[Persona, ...] = (
    Persona(
        name="Pragmatist",
        prompt=(
            "You are the Pragmatist. Focus on: feasibility, implementation cost, "
            "quick wins.\nRULES: MAX 3 bullet points. Each bullet: 1-2 sentences. "
            "Be concise."
        ),
    ),
    Persona(
        name="Innovator",
        prompt=(
            "You are the Innovator. Focus on: creative solutions, novel approaches, "
            "'what if' thinking.\nRULES: MAX 3 bullet points. Each bullet: 1-2 "
            "sentences. Build on previous ideas, don't repeat."
        ),
    ),
    Persona(
        name="Critic",
        prompt=(
            "You are the Critic. Focus on: risks, edge cases, what could go wrong.\n"
            "RULES: MAX 3 bullet points. Each bullet: 1-2 sentences. Only raise NEW "
            "concerns."
        ),
    ),
)


@dataclass
class BrainstormState:
    """Topic, round counter and every persona answer so far."""

    topic: str
    max_rounds: int = 2
    round: int = 1
    responses: list[tuple[str, str]] = field(default_factory=list)

    def agent_context(self, persona_index: int) -> str:
        """Topic plus the answers given earlier in the current round."""
        context = f"TOPIC: {self.topic}"
        round_start = (self.round - 1) * len(PERSONAS)
        for name, response in self.responses[round_start : round_start + persona_index]:
            context += f"\n\n[{name[0]}]: {response}"
        return context

    def has_consensus(self) -> bool:
        """True when the last answer is the critic's and signals agreement."""
        if not self.responses:
            return False
        name, response = self.responses[-1]
        if name != "Critic":
            return False
        lowered = response.lower()
        return any(phrase in lowered for phrase in CONSENSUS_PHRASES)

    def ideas(self) -> str:
        return "\n\n".join(f"[{name[0]}] {response}" for name, response in self.responses)


class BrainstormRunner:
    """Runs a brainstorm and reports it through the event channel."""

    def __init__(
        self,
        provider: ProviderClient,
        model: str,
        max_rounds: int = 2,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self.max_rounds = max_rounds
        self.rate_limiter = rate_limiter

    async def run(self, topic: str, emitter: TurnEmitter) -> FinishReason:
        """Run all rounds and the synthesis.

        Returns:
            FinishReason: COMPLETED, or ERROR if a provider call failed
        """
        state = BrainstormState(topic=topic, max_rounds=self.max_rounds)
        logger.info(f"Brainstorm started on: {topic[:80]}")

        try:
            while True:
                emitter.emit(
                    StatusUpdate(f"Brainstorm round {state.round}/{state.max_rounds}...")
                )
                for index, persona in enumerate(PERSONAS):
                    emitter.emit(StatusUpdate(f"Brainstorm: {persona.name} thinking..."))
                    user_content = f"{state.agent_context(index)}\n\nYour perspective:"
                    response = await self._ask(
                        persona.name, persona.prompt, user_content, emitter
                    )
                    state.responses.append((persona.name, response))
                    emitter.emit(BrainstormAgentDone(agent=persona.name, response=response))

                if state.has_consensus():
                    logger.info(f"Brainstorm reached consensus in round {state.round}")
                    break
                if state.round >= state.max_rounds:
                    break
                state.round += 1

            emitter.emit(StatusUpdate("Brainstorm: Synthesizing..."))
            synthesis = await self._ask(
                SYNTHESIS_AGENT,
                SYNTHESIS_PROMPT,
                f"TOPIC: {state.topic}\n\nIDEAS:\n{state.ideas()}",
                emitter,
            )
            emitter.emit(BrainstormComplete(synthesis=synthesis))
        except ProviderError as e:
            logger.error(f"Brainstorm failed: {e}")
            emitter.emit(ErrorEvent(f"Brainstorm error: {e}"))
            emitter.emit(Finished(FinishReason.ERROR))
            return FinishReason.ERROR

        emitter.emit(Finished(FinishReason.COMPLETED))
        return FinishReason.COMPLETED

    async def _ask(
        self, agent: str, system_prompt: str, user_content: str, emitter: TurnEmitter
    ) -> str:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ]
        decoder = StreamDecoder()
        if self.rate_limiter is not None:
            self.rate_limiter.record_request()

        async for chunk in self.provider.stream_chat(self.model, messages, []):
            for event in decoder.feed(chunk):
                self._forward(agent, event, emitter)
        for event in decoder.flush():
            self._forward(agent, event, emitter)

        return decoder.result().content.strip()

    def _forward(self, agent: str, event: object, emitter: TurnEmitter) -> None:
        if isinstance(event, ContentToken):
            emitter.emit(BrainstormToken(agent=agent, text=event.text))
        elif isinstance(event, UsageReport):
            if self.rate_limiter is not None:
                self.rate_limiter.record_usage(event.prompt_tokens, event.completion_tokens)
            emitter.emit(UsageUpdate(event.prompt_tokens, event.completion_tokens))
