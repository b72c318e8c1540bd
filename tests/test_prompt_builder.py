from zakerbot.models import KnowledgeItem, KnowledgeItemType, PersonalityTraits
from zakerbot.prompt_builder import (
    KNOWLEDGE_BASE_EMPTY,
    KNOWLEDGE_BASE_FILLED,
    MISSING_CONTENT,
    build_contents,
    build_system_instruction,
    learning_difficulty_instructions,
    personality_instructions,
    stage_language,
)
from zakerbot.prompt_loader import load_prompt, render_prompt
from zakerbot.registration import (
    DIFFICULTY_BLIND,
    DIFFICULTY_FOCUS,
    DIFFICULTY_SPEECH_DELAY,
    NO_DIFFICULTY,
    STAGE_PRIMARY,
    STAGE_SECONDARY,
    demo_profile,
)

from conftest import PROMPTS_DIR


def traits(**scores):
    values = dict(agreeableness=50, conscientiousness=50, extraversion=50, neuroticism=50, openness=50)
    values.update(scores)
    return PersonalityTraits(**values)


def test_personality_threshold_is_strict():
    assert personality_instructions(None) == "No personality data available."
    assert "Extraversion" not in personality_instructions(traits(extraversion=60))
    assert "Extraversion" in personality_instructions(traits(extraversion=61))
    assert "Neuroticism" in personality_instructions(traits(neuroticism=90))


def test_learning_difficulty_adaptations():
    assert "no registered" in learning_difficulty_instructions([NO_DIFFICULTY])
    assert "no registered" in learning_difficulty_instructions([])

    text = learning_difficulty_instructions([DIFFICULTY_FOCUS, DIFFICULTY_BLIND, DIFFICULTY_SPEECH_DELAY])
    assert "Distraction" in text
    assert "Blindness" in text
    assert "speech delay" in text


def test_stage_language_adds_foreign_subject_rules():
    assert "الابتدائية" in stage_language(STAGE_PRIMARY, "الرياضيات")
    rules = stage_language(STAGE_SECONDARY, "اللغة الفرنسية")
    assert "(اللغة الفرنسية)" in rules
    assert "<<SUBJECT>>" not in rules


def test_system_instruction_fills_every_slot():
    profile = demo_profile()
    empty = build_system_instruction(PROMPTS_DIR, profile, "الفيزياء", [])
    filled = build_system_instruction(
        PROMPTS_DIR,
        profile,
        "الفيزياء",
        [KnowledgeItem(type=KnowledgeItemType.FILE, title="ملف", content="نص")],
    )

    assert "<<" not in empty
    assert "الفيزياء" in empty
    assert "مستخدم" in empty
    assert KNOWLEDGE_BASE_EMPTY in empty
    assert KNOWLEDGE_BASE_FILLED in filled


def test_build_contents_renders_text_blocks_and_image_parts():
    knowledge = [
        KnowledgeItem(type=KnowledgeItemType.FILE, title="الدرس", content="قانون نيوتن"),
        KnowledgeItem(type=KnowledgeItemType.URL, title="رابط", url="https://edu.example.org/x"),
        KnowledgeItem(type=KnowledgeItemType.IMAGE, title="صورة", data_url="data:image/png;base64,aGk=", mime_type="image/png"),
        KnowledgeItem(type=KnowledgeItemType.IMAGE, title="بدون بيانات"),
    ]

    contents = build_contents(PROMPTS_DIR, "ما هو القانون؟", knowledge)
    text = contents["parts"][0]["text"]

    assert "--- START FILE: الدرس ---" in text
    assert "--- END FILE: الدرس ---" in text
    assert "URL: https://edu.example.org/x" in text
    assert MISSING_CONTENT in text
    assert '"ما هو القانون؟"' in text
    assert contents["parts"][1:] == [{"inline_data": {"mime_type": "image/png", "data": "aGk="}}]


def test_load_prompt_strips_bom(tmp_path):
    path = tmp_path / "p.txt"
    path.write_bytes("\ufeffمرحبا <<NAME>>".encode("utf-8"))
    assert render_prompt(load_prompt(path), {"NAME": "سارة"}) == "مرحبا سارة"
