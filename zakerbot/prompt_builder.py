"""System instruction and content assembly for tutoring turns.

The system instruction combines the session subject, personality-derived tone
directives, learning-difficulty adaptations, and stage-specific language rules.
The user turn carries every text knowledge item as a delimited block followed
by the question, plus one inline part per knowledge-base image.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

from .models import KnowledgeItem, KnowledgeItemType, PersonalityTraits, UserProfile
from .prompt_loader import load_prompt, render_prompt
from .registration import (
    DIFFICULTY_AUTISM,
    DIFFICULTY_BLIND,
    DIFFICULTY_DOWN_SYNDROME,
    DIFFICULTY_FOCUS,
    DIFFICULTY_SPEECH_DELAY,
    NO_DIFFICULTY,
    STAGE_PREPARATORY,
    STAGE_PRIMARY,
    STAGE_SECONDARY,
)

TRAIT_THRESHOLD = 60

FOREIGN_LANGUAGE_SUBJECTS = ["اللغة الإنجليزية", "اللغة الفرنسية", "اللغة الألمانية", "اللغة الإيطالية"]

_TRAIT_DIRECTIVES = [
    ("extraversion", "- High Extraversion: be energetic, interactive and engaging, and ask follow-up questions."),
    ("conscientiousness", "- High Conscientiousness: be structured, calm, organised and detailed."),
    ("agreeableness", "- High Agreeableness: use a friendly, collaborative and encouraging tone."),
    ("openness", "- High Openness: be enthusiastic and bring in novel ideas and connections."),
    (
        "neuroticism",
        "- High Neuroticism (strict): be very gentle, patient and reassuring; avoid criticism and "
        "give positive reinforcement.",
    ),
]

_STAGE_LANGUAGE: Dict[str, str] = {
    STAGE_PRIMARY: (
        "لغة بسيطة ومشجعة: تحدث بلهجة مصرية رسمية وبأسلوب بسيط وواضح يناسب تلميذ المرحلة الابتدائية، "
        "وبسّط المصطلحات الصعبة واستخدم التعزيز الإيجابي."
    ),
    STAGE_PREPARATORY: (
        "لغة واضحة وداعمة: تحدث بلهجة مصرية رسمية تناسب طالب المرحلة الإعدادية، "
        "ويمكنك استخدام مصطلحات أدق مع شرحها دائماً بوضوح."
    ),
    STAGE_SECONDARY: (
        "لغة أكاديمية دقيقة: تحدث بلهجة مصرية رسمية وأكاديمية تناسب طالب المرحلة الثانوية، "
        "واستخدم المصطلحات العلمية والأدبية الدقيقة بنبرة احترافية."
    ),
}
_DEFAULT_STAGE_LANGUAGE = "اكتب فقط بلهجة عربية مصرية رسمية."

_FOREIGN_SUBJECT_RULES = (
    "\nلأن المادة لغة أجنبية (<<SUBJECT>>):\n"
    "1. في المرحلتين الابتدائية والإعدادية اشرح معنى كل مصطلح أجنبي باللغة العربية.\n"
    "2. في المرحلة الثانوية يمكنك استخدام مصطلحات أجنبية أكثر مع التأكد من فهم الطالب لها.\n"
)

KNOWLEDGE_BASE_FILLED = (
    "The knowledge base contains materials. Explain and discuss only the content found in it."
)
KNOWLEDGE_BASE_EMPTY = (
    "The knowledge base is empty. First ask the student to add files (such as PDFs) or web links "
    "so you can study them together."
)

MISSING_CONTENT = "Content not available for this item."


def personality_instructions(traits: Optional[PersonalityTraits]) -> str:
    """Purpose: Translate Big Five scores into tone directives.
    Inputs/Outputs: Input is optional traits; output is a directive block.
    Side Effects / State: None.
    Dependencies: Uses TRAIT_THRESHOLD and _TRAIT_DIRECTIVES.
    Failure Modes: None; missing traits produce a neutral sentence.
    If Removed: Replies ignore the student's assessed personality.
    Testing Notes: A score of exactly 60 must not add a directive; 61 must.
    """
    # Only traits strictly above the threshold contribute a directive.
    if traits is None:
        return "No personality data available."
    lines = ["You MUST adapt your tone and style to the student's personality traits below:"]
    for trait, directive in _TRAIT_DIRECTIVES:
        if getattr(traits, trait) > TRAIT_THRESHOLD:
            lines.append(directive)
    return "\n".join(lines) + "\n"


def learning_difficulty_instructions(difficulties: List[str]) -> str:
    """Build the teaching-method adaptations for registered learning difficulties."""
    if not difficulties or difficulties == [NO_DIFFICULTY]:
        return "The student has no registered learning difficulties."
    lines = ["CRITICAL: adapt your teaching method to the student's learning difficulties:"]
    if DIFFICULTY_FOCUS in difficulties:
        lines.append(
            "- Distraction and lack of focus: keep explanations short, split complex topics into "
            "small parts, and repeat key information."
        )
    if DIFFICULTY_BLIND in difficulties:
        lines.append(
            "- Blindness: be highly descriptive and describe any image or visual material in detail."
        )
    if any(item in difficulties for item in (DIFFICULTY_DOWN_SYNDROME, DIFFICULTY_AUTISM, DIFFICULTY_SPEECH_DELAY)):
        lines.append(
            "- Down syndrome, autism or speech delay: use simple, clear language, be patient, "
            "repeat, and stay very encouraging."
        )
    return "\n".join(lines) + "\n"


def stage_language(stage: str, session_title: str) -> str:
    """Language register for the stage, plus foreign-language rules when relevant."""
    rules = _STAGE_LANGUAGE.get(stage, _DEFAULT_STAGE_LANGUAGE)
    if session_title in FOREIGN_LANGUAGE_SUBJECTS:
        rules += render_prompt(_FOREIGN_SUBJECT_RULES, {"SUBJECT": session_title})
    return rules


def build_system_instruction(
    prompts_dir: Path,
    profile: UserProfile,
    session_title: str,
    knowledge_base: List[KnowledgeItem],
) -> str:
    """Purpose: Assemble the system instruction for a tutoring turn.
    Inputs/Outputs: Inputs are the prompts directory, profile, session title, and
        knowledge base; output is the rendered instruction string.
    Side Effects / State: Reads system_instruction.txt.
    Dependencies: Uses personality/difficulty/stage helpers and render_prompt.
    Failure Modes: Missing template raises FileNotFoundError.
    If Removed: The model answers without subject, tone, or grounding rules.
    Testing Notes: Empty vs non-empty knowledge base switch the status sentence.
    """
    # Fill every template slot from the profile and session.
    first_name = profile.name.split(" ")[0] if profile.name else ""
    template = load_prompt(prompts_dir / "system_instruction.txt")
    return render_prompt(
        template,
        {
            "SESSION_TITLE": session_title,
            "PERSONALITY": personality_instructions(profile.personality_traits),
            "LEARNING_DIFFICULTIES": learning_difficulty_instructions(profile.learning_difficulty),
            "LANGUAGE_RULES": stage_language(profile.stage, session_title),
            "KNOWLEDGE_BASE_STATUS": KNOWLEDGE_BASE_FILLED if knowledge_base else KNOWLEDGE_BASE_EMPTY,
            "FIRST_NAME": first_name,
        },
    )


def render_knowledge_item(item: KnowledgeItem) -> str:
    kind = item.type.value.upper()
    url_line = f"URL: {item.url}" if item.type == KnowledgeItemType.URL else ""
    return (
        f"\n--- START {kind}: {item.title} ---\n"
        f"{url_line}\n"
        f"{item.content or MISSING_CONTENT}\n"
        f"--- END {kind}: {item.title} ---\n"
    )


def data_url_to_part(data_url: str, mime_type: str) -> Dict[str, Dict[str, str]]:
    """Convert a base64 data URL into an inline-data content part."""
    payload = data_url.split(",", 1)[1] if "," in data_url else data_url
    return {"inline_data": {"mime_type": mime_type, "data": payload}}


def build_contents(prompts_dir: Path, prompt: str, knowledge_base: List[KnowledgeItem]) -> Dict[str, list]:
    """Purpose: Build the user content parts for a tutoring turn.
    Inputs/Outputs: Inputs are the prompts directory, question, and knowledge base; output
        is {"parts": [text_part, *image_parts]}.
    Side Effects / State: Reads user_turn.txt.
    Dependencies: Uses render_knowledge_item and data_url_to_part.
    Failure Modes: Images lacking data URL or MIME type are skipped.
    If Removed: The model never sees knowledge-base text or images.
    Testing Notes: Check block markers, URL lines, and the image part count.
    """
    # Text items are concatenated; images become inline parts.
    text_items = [item for item in knowledge_base if item.type != KnowledgeItemType.IMAGE]
    image_items = [item for item in knowledge_base if item.type == KnowledgeItemType.IMAGE]
    knowledge_text = "\n\n".join(render_knowledge_item(item) for item in text_items)
    template = load_prompt(prompts_dir / "user_turn.txt")
    text_part = {"text": render_prompt(template, {"KNOWLEDGE_TEXT": knowledge_text, "QUESTION": prompt})}
    image_parts = [
        data_url_to_part(item.data_url, item.mime_type)
        for item in image_items
        if item.data_url and item.mime_type
    ]
    return {"parts": [text_part, *image_parts]}
