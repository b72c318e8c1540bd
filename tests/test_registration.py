from datetime import date

import pytest

from zakerbot.errors import ValidationError
from zakerbot.models import PersonalityTraits, RegistrationRequest
from zakerbot.registration import (
    AGE_RANGE_ERROR,
    DIFFICULTY_AUTISM,
    DIFFICULTY_BLIND,
    GOVERNORATES,
    NO_DIFFICULTY,
    SEMESTERS,
    STAGE_PREPARATORY,
    STAGE_PRIMARY,
    STAGE_SECONDARY,
    build_profile,
    calculate_age,
    classes_for_stage,
    schools_for_stage,
    subjects_for_stage,
    suggest_stage,
    toggle_learning_difficulty,
    validate_registration,
)

TODAY = date(2025, 3, 10)


def valid_form(**overrides) -> RegistrationRequest:
    values = dict(
        name="أحمد علي",
        birth_date="2009-05-01",
        governorate=GOVERNORATES[0],
        gender="Male",
        stage=STAGE_SECONDARY,
        school_name=schools_for_stage(STAGE_SECONDARY)[0],
        class_name=classes_for_stage(STAGE_SECONDARY)[0],
        semester=SEMESTERS[0],
        hobbies="كرة القدم",
        learning_difficulty=[NO_DIFFICULTY],
    )
    values.update(overrides)
    return RegistrationRequest(**values)


def test_calculate_age_before_and_on_birthday():
    assert calculate_age(date(2010, 3, 11), TODAY) == 14
    assert calculate_age(date(2010, 3, 10), TODAY) == 15


@pytest.mark.parametrize(
    "age, stage",
    [(4, None), (5, STAGE_PRIMARY), (12, STAGE_PRIMARY), (13, STAGE_PREPARATORY), (15, STAGE_PREPARATORY), (16, STAGE_SECONDARY), (20, STAGE_SECONDARY), (21, None)],
)
def test_suggest_stage_boundaries(age, stage):
    assert suggest_stage(age) == stage


def test_toggle_learning_difficulty_keeps_none_exclusive():
    selected = toggle_learning_difficulty([NO_DIFFICULTY], DIFFICULTY_BLIND)
    assert selected == [DIFFICULTY_BLIND]

    selected = toggle_learning_difficulty(selected, DIFFICULTY_AUTISM)
    assert selected == [DIFFICULTY_BLIND, DIFFICULTY_AUTISM]

    assert toggle_learning_difficulty(selected, NO_DIFFICULTY) == [NO_DIFFICULTY]
    assert toggle_learning_difficulty([DIFFICULTY_BLIND], DIFFICULTY_BLIND) == [NO_DIFFICULTY]


def test_stage_catalogs_are_distinct():
    assert subjects_for_stage(STAGE_PRIMARY) != subjects_for_stage(STAGE_SECONDARY)
    assert schools_for_stage("unknown") == []
    assert classes_for_stage("unknown") == []


def test_validate_registration_reports_each_field():
    errors = validate_registration(RegistrationRequest(), TODAY)
    for field in ("name", "birth_date", "governorate", "gender", "stage", "school_name", "class_name", "semester", "hobbies", "learning_difficulty"):
        assert field in errors


def test_validate_registration_rejects_out_of_range_age():
    errors = validate_registration(valid_form(birth_date="2022-01-01"), TODAY)
    assert errors == {"birth_date": AGE_RANGE_ERROR}


def test_validate_registration_rejects_values_outside_catalog():
    form = valid_form(
        stage="المرحلة الجامعية",
        governorate="باريس",
        semester="الفصل الصيفي",
        learning_difficulty=[NO_DIFFICULTY, "غير ذلك"],
    )
    errors = validate_registration(form, TODAY)
    assert set(errors) == {"stage", "governorate", "semester", "learning_difficulty"}
    assert validate_registration(valid_form(), TODAY) == {}


def test_build_profile_computes_age_and_keeps_traits():
    traits = PersonalityTraits(agreeableness=70, conscientiousness=50, extraversion=40, neuroticism=30, openness=90)
    profile = build_profile(valid_form(), traits=traits, today=TODAY)

    assert profile.age == 15
    assert profile.personality_traits == traits
    assert profile.learning_difficulty == [NO_DIFFICULTY]


def test_build_profile_raises_with_field_errors():
    with pytest.raises(ValidationError) as excinfo:
        build_profile(valid_form(name="  "), today=TODAY)
    assert "name" in excinfo.value.errors
