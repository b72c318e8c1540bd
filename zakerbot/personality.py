"""Mini-IPIP personality assessment: questions, answer formatting, and trait analysis."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from .errors import AssistantError
from .gemini_client import GeminiClient
from .models import PersonalityTraits
from .prompt_loader import load_prompt, render_prompt
from .utils import safe_json_loads

logger = logging.getLogger("zakerbot.personality")

QUESTIONS: Dict[int, str] = {
    1: "أحب المشاركة في الحفلات والأنشطة الطلابية.",
    2: "أتعاطف مع مشاعر الآخرين.",
    3: "أقوم بإنجاز الأعمال المطلوبة مني على الفور.",
    4: "لدي تقلبات مزاجية متكررة.",
    5: "لدي خيال قوي.",
    6: "لا أتحدث كثيراً.",
    7: "لست مهتماً بمشاكل الآخرين ولا معاناتهم.",
    8: "كثيراً ما أنسى إعادة الأشياء إلى مكانها الصحيح.",
    9: "أميل إلى الراحة والاسترخاء في معظم الأوقات.",
    10: "لست مهتماً بالأفكار النظرية أو غير الملموسة.",
    11: "في الحفلات أحب التحدث مع عدد كبير ومتنوع من الأشخاص.",
    12: "أشعر بمشاعر الآخرين.",
    13: "أحب النظام والترتيب.",
    14: "أغضب وأحزن بسهولة.",
    15: "أجد صعوبة في فهم الأفكار النظرية أو غير الملموسة.",
    16: "أحب البقاء بعيداً عن الأنظار خلال المواقف الاجتماعية.",
    17: "لست مهتماً بالآخرين.",
    18: "أميل إلى بعثرة الأشياء وجعلها فوضوية.",
    19: "نادراً ما أشعر بالكآبة والحزن.",
    20: "ليس لدي خيال قوي.",
}

ANSWER_OPTIONS = ["أعارض بشدة", "أعارض", "محايد", "أوافق", "أوافق بشدة"]

REVERSED_QUESTIONS = [6, 7, 8, 9, 10, 15, 16, 17, 18, 19, 20]

TRAIT_KEYS = ["openness", "conscientiousness", "extraversion", "agreeableness", "neuroticism"]

ANALYSIS_FAILED = "عذراً، لم أتمكن من تحليل تقييم الشخصية."
INCOMPLETE_ANSWERS = "الرجاء الإجابة على جميع الأسئلة العشرين قبل الإرسال."
HUGGINGFACE_UNAVAILABLE = "فشل الاتصال بـ Hugging Face API"
HUGGINGFACE_INVALID = "الاستجابة غير صالحة من نموذج Hugging Face"


def missing_answers(answers: Dict[int, str]) -> List[int]:
    """Return the ids of questions without a valid answer, in question order."""
    return [qid for qid in QUESTIONS if answers.get(qid) not in ANSWER_OPTIONS]


def format_answers(answers: Dict[int, str]) -> str:
    lines = []
    for index, (qid, question) in enumerate(QUESTIONS.items(), start=1):
        lines.append(f'{index}. السؤال: "{question}"\n   الإجابة: {answers.get(qid, "")}')
    return "\n".join(lines)


def build_analysis_prompt(prompts_dir: Path, answers: Dict[int, str]) -> str:
    template = load_prompt(prompts_dir / "personality_analysis.txt")
    return render_prompt(
        template,
        {
            "ANSWERS": format_answers(answers),
            "REVERSED": ", ".join(str(qid) for qid in REVERSED_QUESTIONS),
        },
    )


def parse_traits(payload: Any) -> Optional[PersonalityTraits]:
    """Purpose: Convert a model payload into clamped PersonalityTraits.
    Inputs/Outputs: Input is a dict or JSON-ish text; output is traits or None.
    Side Effects / State: None.
    Dependencies: Uses safe_json_loads for text payloads.
    Failure Modes: Returns None when openness is not numeric or any trait is missing.
    If Removed: Analyzer outputs cannot be validated before reaching the profile.
    Testing Notes: Scores above 100 clamp to 100; a string openness returns None.
    """
    # Accept either parsed JSON or raw model text.
    data = safe_json_loads(payload) if isinstance(payload, str) else payload
    if not isinstance(data, dict):
        return None
    if not isinstance(data.get("openness"), (int, float)) or isinstance(data.get("openness"), bool):
        return None
    scores: Dict[str, float] = {}
    for key in TRAIT_KEYS:
        value = data.get(key)
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return None
        scores[key] = max(0.0, min(100.0, float(value)))
    return PersonalityTraits(**scores)


class PersonalityAnalyzer:
    """Scores the assessment with Gemini in JSON mode."""

    def __init__(self, gemini: GeminiClient, prompts_dir: Path) -> None:
        self._gemini = gemini
        self._prompts_dir = prompts_dir

    def analyze(self, answers: Dict[int, str]) -> PersonalityTraits:
        """Purpose: Estimate Big Five scores from the twenty answers.
        Inputs/Outputs: Input maps question id to answer; output is PersonalityTraits.
        Side Effects / State: One Gemini call.
        Dependencies: Uses build_analysis_prompt, GeminiClient.generate_content, parse_traits.
        Failure Modes: Raises AssistantError (localized) on SDK errors or invalid output.
        If Removed: Registration cannot attach personality traits to the profile.
        Testing Notes: Stub generate_content with JSON text and check the parsed traits.
        """
        # The whole assessment travels in the system instruction.
        instruction = build_analysis_prompt(self._prompts_dir, answers)
        try:
            raw = self._gemini.generate_content(
                "الرجاء تحليل إجابات تقييم الشخصية المقدمة.",
                system_instruction=instruction,
                temperature=0.2,
                response_mime_type="application/json",
            )
        except Exception as exc:
            logger.error("personality provider=gemini status=failed", exc_info=True)
            raise AssistantError(ANALYSIS_FAILED) from exc
        traits = parse_traits(raw)
        if traits is None:
            logger.error("personality provider=gemini status=invalid_output raw=%s", raw[:200])
            raise AssistantError(ANALYSIS_FAILED)
        return traits


class HuggingFaceAnalyzer:
    """Scores the assessment with a hosted Hugging Face inference model."""

    def __init__(
        self,
        api_token: str,
        model_url: str,
        prompts_dir: Path,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._api_token = api_token
        self._model_url = model_url
        self._prompts_dir = prompts_dir
        self._timeout = timeout
        self.session = session or requests.Session()

    def analyze(self, answers: Dict[int, str]) -> PersonalityTraits:
        """Purpose: Post the assessment prompt to the inference endpoint and parse traits.
        Inputs/Outputs: Input maps question id to answer; output is PersonalityTraits.
        Side Effects / State: One HTTP POST.
        Dependencies: Uses requests.Session.post and parse_traits.
        Failure Modes: Transport/HTTP errors and unparseable payloads raise AssistantError.
        If Removed: Only the Gemini analyzer remains available.
        Testing Notes: Monkeypatch session.post to return [{"generated_text": "{...}"}].
        """
        # Send the rendered prompt as the model input.
        prompt = build_analysis_prompt(self._prompts_dir, answers)
        try:
            response = self.session.post(
                self._model_url,
                json={"inputs": prompt},
                headers={"Authorization": f"Bearer {self._api_token}"},
                timeout=self._timeout,
            )
            response.raise_for_status()
            result = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("personality provider=huggingface status=unreachable", exc_info=True)
            raise AssistantError(HUGGINGFACE_UNAVAILABLE) from exc

        # The endpoint may wrap the JSON in generated_text.
        payload: Any = result
        if isinstance(result, list) and result and isinstance(result[0], dict):
            payload = result[0].get("generated_text", result[0])
        elif isinstance(result, dict) and "generated_text" in result:
            payload = result["generated_text"]
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError:
                payload = safe_json_loads(payload)
        traits = parse_traits(payload)
        if traits is None:
            raise AssistantError(HUGGINGFACE_INVALID)
        return traits
