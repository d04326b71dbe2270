from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from google import genai
from google.genai import types

from ..config import GeminiConfig
from ..models import Drill, PracticePlan, PracticeSession

logger = logging.getLogger(__name__)

PRACTICE_PLAN = 'practice_plan'
MONTHLY_RECAP = 'monthly_recap'
PRACTICE_LOG = 'practice_log'

PARSE_ERROR = 'Failed to parse AI response as JSON'

SYSTEM_INSTRUCTION = (
    'You are an expert golf coach who returns ONLY valid, well-formed JSON responses. '
    'Never include unescaped quotes or newlines within JSON strings.'
)

JSON_INSTRUCTIONS = (
    'IMPORTANT: Your response MUST be a valid JSON object with properly escaped quotation marks '
    'and no trailing commas.\n'
    'Do not include markdown formatting, code blocks, or explanatory text outside the JSON.\n'
    'Double-check that all strings are properly terminated and that there are no syntax errors.'
)


@dataclass
class AIServiceResponse:
    """Raw model text plus either the parsed JSON object or an error."""

    response: str
    error: Optional[str] = None
    parsed_data: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.parsed_data is not None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {'response': self.response}
        if self.error is not None:
            payload['error'] = self.error
        if self.parsed_data is not None:
            payload['parsedData'] = self.parsed_data
        return payload


class AIService:
    """Prompt construction and JSON parsing around the Gemini API.

    Failures never raise: the caller always receives an
    :class:`AIServiceResponse`, with ``error`` set when the provider call
    failed or its answer was not JSON. Nothing is retried.
    """

    def __init__(self, config: Optional[GeminiConfig] = None) -> None:
        self._config = config or GeminiConfig()
        self.client: Optional[genai.Client] = self._configure_gemini(self._config)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    # --- Public generators ----------------------------------------------

    def generate_practice_plan(
        self,
        handicap: float,
        sessions_per_week: int,
        description: str,
        time_availability: str,
        focus_area: str = 'Mixed',
        end_date: Optional[str] = None,
    ) -> AIServiceResponse:
        """Ask the model for a structured weekly practice plan."""

        prompt = self._build_plan_prompt(
            handicap, sessions_per_week, description, time_availability, focus_area, end_date
        )
        return self._generate(prompt, PRACTICE_PLAN)

    def generate_monthly_recap(
        self,
        completed_sessions: int,
        scheduled_sessions: int,
        effort_scores: Mapping[str, int],
        start_handicap: float,
        end_handicap: float,
    ) -> AIServiceResponse:
        """Ask the model for an encouraging narrative of the month."""

        breakdown = ', '.join(
            f'{self._format_category(category)} ({score})' for category, score in effort_scores.items()
        )
        prompt = (
            'This month the golfer:\n'
            f'- Completed {completed_sessions} of {scheduled_sessions} scheduled practice sessions.\n'
            f'- Rated their effort: {breakdown}.\n'
            f'- Handicap changed from {start_handicap} → {end_handicap}.\n\n'
            'Provide a brief encouraging monthly summary highlighting their successes and '
            'suggesting a focus area for next month.\n\n'
            'Respond with a JSON object that has this structure (and nothing else):\n'
            '{\n'
            '  "summary": "Overall summary of the month",\n'
            '  "highlights": ["Key achievement 1", "Key achievement 2"],\n'
            '  "focus_suggestion": "Suggested focus area for next month",\n'
            '  "encouragement": "Personalized encouragement message"\n'
            '}'
        )
        return self._generate(prompt, MONTHLY_RECAP)

    def generate_practice_log_content(self, category: str, duration: int, rating: int) -> AIServiceResponse:
        """Draft session notes for a quickly logged practice session."""

        prompt = (
            f'Given the golfer did a {duration}-minute {category.lower()} practice session rated as '
            f'{rating} out of 5, generate a concise, structured session note describing the likely '
            'drills and session effectiveness briefly.\n\n'
            'Respond with a JSON object that has this structure (and nothing else):\n'
            '{\n'
            '  "session_summary": "Brief overall summary",\n'
            '  "drills_completed": ["Likely drill 1", "Likely drill 2"],\n'
            '  "effectiveness": "Assessment of effectiveness based on rating",\n'
            '  "suggestion": "Brief suggestion for next time"\n'
            '}'
        )
        return self._generate(prompt, PRACTICE_LOG)

    def complete_json(self, prompt: str, content_type: str) -> str:
        """Send a caller-built prompt and return the raw JSON text.

        Unlike the generators this raises on provider failure; it backs the
        ``/api/openai`` proxy endpoint, which reports errors itself.
        """

        return self._call_gemini(f'{prompt}\n\n{JSON_INSTRUCTIONS}', content_type)

    # --- Plan conversion ------------------------------------------------

    @staticmethod
    def practice_plan_document(
        parsed: Mapping[str, Any],
        time_per_session: int,
        start_date: datetime,
        end_date: datetime,
    ) -> PracticePlan:
        """Turn a parsed AI plan into a storable :class:`PracticePlan`."""

        sessions: List[PracticeSession] = []
        for raw_session in parsed.get('sessions') or []:
            if not isinstance(raw_session, Mapping):
                continue
            drills = [
                Drill(
                    name=str(raw_drill.get('name') or 'Drill'),
                    duration=raw_drill.get('duration'),
                    description=raw_drill.get('description'),
                    goal=raw_drill.get('goal'),
                    keyThought=raw_drill.get('keyThought'),
                )
                for raw_drill in raw_session.get('drills') or []
                if isinstance(raw_drill, Mapping)
            ]
            sessions.append(
                PracticeSession(
                    day=str(raw_session.get('day') or ''),
                    focus=str(raw_session.get('focus') or ''),
                    duration=raw_session.get('duration') or f'{time_per_session} mins',
                    location=raw_session.get('location'),
                    warmup=raw_session.get('warmup'),
                    drills=drills,
                )
            )

        focus = parsed.get('improvementFocus')
        return PracticePlan(
            title=str(parsed.get('title') or 'AI Practice Plan'),
            description=parsed.get('overview'),
            goal=parsed.get('userGoal'),
            focusAreas=[str(item) for item in focus] if isinstance(focus, list) else None,
            sessions=sessions,
            timePerSession=time_per_session,
            aiGenerated=True,
            startDate=start_date,
            endDate=end_date,
        )

    # --- Private helpers -------------------------------------------------

    def _generate(self, prompt: str, content_type: str) -> AIServiceResponse:
        try:
            raw = self._call_gemini(f'{prompt}\n\n{JSON_INSTRUCTIONS}', content_type)
        except Exception as exc:
            logger.warning('Gemini %s request failed: %s', content_type, exc)
            return AIServiceResponse(response='', error=f'API error: {exc}')

        parsed = self._parse_json(raw)
        if parsed is None:
            logger.warning('Gemini %s response was not valid JSON', content_type)
            return AIServiceResponse(response=raw, error=PARSE_ERROR)
        return AIServiceResponse(response=raw, parsed_data=parsed)

    def _call_gemini(self, prompt: str, content_type: str) -> str:
        if self.client is None:
            raise RuntimeError('Gemini API key is not configured')

        logger.info('Requesting %s from %s', content_type, self._config.text_model)
        response = self.client.models.generate_content(
            model=self._config.text_model,
            contents=[prompt],
            config=types.GenerateContentConfig(
                system_instruction=SYSTEM_INSTRUCTION,
                response_mime_type='application/json',
                temperature=0.5,
                max_output_tokens=2000,
            ),
        )

        text = getattr(response, 'text', None) if response else None
        if text:
            return text.strip()

        candidates = getattr(response, 'candidates', None) or []
        for candidate in candidates:
            content = getattr(candidate, 'content', None)
            parts = getattr(content, 'parts', None) if content else None
            if not parts:
                continue
            assembled = ''.join(getattr(part, 'text', '') or '' for part in parts)
            if assembled.strip():
                return assembled.strip()
        return ''

    def _parse_json(self, raw: str) -> Optional[Dict[str, Any]]:
        if not raw:
            return None
        cleaned = self._strip_code_fences(raw)
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None

    @staticmethod
    def _strip_code_fences(raw: str) -> str:
        cleaned = raw.strip()
        if cleaned.startswith('```') and cleaned.endswith('```'):
            lines = [line for line in cleaned.splitlines() if not line.strip().startswith('```')]
            return '\n'.join(lines).strip()
        return cleaned

    @staticmethod
    def _format_category(category: str) -> str:
        spaced = re.sub(r'([A-Z])', r' \1', category).strip()
        return spaced[:1].upper() + spaced[1:]

    def _build_plan_prompt(
        self,
        handicap: float,
        sessions_per_week: int,
        description: str,
        time_availability: str,
        focus_area: str,
        end_date: Optional[str],
    ) -> str:
        details = [
            f"- Golfer's handicap: {handicap}",
            f'- Sessions per week: {sessions_per_week}',
            f'- Focus area: {focus_area}',
            f'- Description of needs and any injuries/limitations: {description}',
            f'- Time availability and practice locations: {time_availability}',
        ]
        if end_date:
            details.append(f'- Target end date: {end_date}')

        schema = (
            '{\n'
            '  "title": "Weekly Golf Practice Plan: [DATE RANGE]",\n'
            '  "userGoal": "Brief goal based on handicap",\n'
            '  "improvementFocus": ["Area 1", "Area 2", "Area 3"],\n'
            '  "overview": "Overall advice paragraph",\n'
            '  "sessions": [\n'
            '    {\n'
            '      "day": "Day of week (e.g., Monday, March 17)",\n'
            '      "focus": "Main focus for this session",\n'
            '      "duration": "Total time (e.g., 45 mins)",\n'
            '      "location": "Suggested practice location based on availability",\n'
            '      "warmup": "Brief warmup description",\n'
            '      "drills": [\n'
            '        {\n'
            '          "name": "Name of drill",\n'
            '          "duration": "Time for this drill",\n'
            '          "description": "Step-by-step instructions for the drill",\n'
            '          "goal": "What the golfer should aim to achieve",\n'
            '          "keyThought": "A short, memorable cue for the most important aspect"\n'
            '        }\n'
            '      ]\n'
            '    }\n'
            '  ]\n'
            '}'
        )

        return (
            'Create a personalized golf practice plan with the following details:\n'
            + '\n'.join(details)
            + '\n\n'
            'Create a detailed, structured practice plan following this format:\n'
            '1. A title for the practice plan\n'
            "2. User's goal based on their handicap\n"
            f'3. Key improvement areas extracted from their description (focus heavily on {focus_area})\n'
            f'4. A brief overview paragraph with general advice for improving in {focus_area}\n'
            f"5. {sessions_per_week} practice sessions with specific drills tailored to the golfer's "
            f'needs and focused on {focus_area}\n'
            '6. Each session should be on one of their available days, respecting their time '
            'constraints and practice locations\n'
            '7. If the golfer has mentioned any injuries or physical limitations, ensure the plan '
            'accommodates these with appropriate modifications\n'
            '8. Each drill should have clear step-by-step instructions\n'
            '9. Include a motivational goal for each practice day\n\n'
            'The response must be a valid JSON object with this exact format:\n'
            f'{schema}'
        )

    @staticmethod
    def _configure_gemini(config: GeminiConfig) -> Optional[genai.Client]:
        if not config.is_valid:
            logger.info('Gemini API key not found in environment; AI generation disabled.')
            return None
        try:
            return genai.Client(api_key=config.api_key)
        except Exception as exc:  # pragma: no cover - external SDK
            logger.warning('Gemini integration disabled: %s', exc)
            return None
