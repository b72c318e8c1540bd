"""Registration rules: catalog tables, age/stage derivation, and form validation."""

from __future__ import annotations

from datetime import date
from typing import Dict, List, Optional

from .errors import ValidationError
from .models import PersonalityTraits, RegistrationRequest, UserProfile

STAGE_PRIMARY = "المرحلة الإبتدائية"
STAGE_PREPARATORY = "المرحلة الإعدادية"
STAGE_SECONDARY = "المرحلة الثانوية"
STAGES = [STAGE_PRIMARY, STAGE_PREPARATORY, STAGE_SECONDARY]

NO_DIFFICULTY = "لا يوجد"
DIFFICULTY_BLIND = "كفيف"
DIFFICULTY_AUTISM = "توحد"
DIFFICULTY_SPEECH_DELAY = "تأخر الكلام"
DIFFICULTY_FOCUS = "سرعة التشتت وقلة التركيز"
DIFFICULTY_DOWN_SYNDROME = "متلازمة داون"
LEARNING_DIFFICULTIES = [
    NO_DIFFICULTY,
    DIFFICULTY_BLIND,
    DIFFICULTY_AUTISM,
    DIFFICULTY_SPEECH_DELAY,
    DIFFICULTY_FOCUS,
    DIFFICULTY_DOWN_SYNDROME,
]

GOVERNORATES = [
    "القاهرة", "الإسكندرية", "الجيزة", "القليوبية", "بورسعيد", "السويس", "الإسماعيلية",
    "كفر الشيخ", "الغربية", "المنوفية", "البحيرة", "الشرقية", "الدقهلية",
    "دمياط", "أسيوط", "سوهاج", "قنا", "أسوان", "الأقصر", "المنيا", "بني سويف",
    "الفيوم", "البحر الأحمر", "الوادي الجديد", "مطروح", "شمال سيناء", "جنوب سيناء",
]

SEMESTERS = ["الفصل الدراسي الأول", "الفصل الدراسي الثاني"]
GENDERS = ["Male", "Female"]

MIN_AGE = 5
MAX_AGE = 20

_BASE_SCHOOLS = [
    "مدرسة أ", "مدرسة ب", "مدرسة ج", "مدرسة د", "مدرسة هـ",
    "مدرسة و", "مدرسة ز", "مدرسة ح", "مدرسة ط", "مدرسة ي",
]

_STAGE_SCHOOLS: Dict[str, List[str]] = {
    STAGE_PRIMARY: ["مدرسة السلام الإبتدائية", "مدرسة المستقبل الإبتدائية"],
    STAGE_PREPARATORY: ["مدرسة المستقبل الإعدادية بنين", "مدرسة المستقبل الإعدادية بنات"],
    STAGE_SECONDARY: ["مدرسة السلام الثانوية", "مدرسة العاشر من رمضان"],
}

_STAGE_CLASSES: Dict[str, List[str]] = {
    STAGE_PRIMARY: ["الصف الأول", "الصف الثاني", "الصف الثالث", "الصف الرابع", "الصف الخامس", "الصف السادس"],
    STAGE_PREPARATORY: ["الصف الأول", "الصف الثاني", "الصف الثالث"],
    STAGE_SECONDARY: ["الصف الأول", "الصف الثاني", "الصف الثالث"],
}

_STAGE_SUBJECTS: Dict[str, List[str]] = {
    STAGE_PRIMARY: [
        "اللغة العربية", "الرياضيات", "العلوم", "الدراسات الاجتماعية", "اللغة الإنجليزية", "التربية الدينية",
    ],
    STAGE_PREPARATORY: [
        "اللغة العربية", "الرياضيات", "العلوم", "الدراسات الاجتماعية", "اللغة الإنجليزية",
        "الحاسب الآلي", "التربية الفنية",
    ],
    STAGE_SECONDARY: [
        "اللغة العربية", "اللغة الإنجليزية", "اللغة الفرنسية", "اللغة الألمانية", "اللغة الإيطالية",
        "الرياضيات", "الفيزياء", "الكيمياء", "الأحياء", "الجيولوجيا", "التاريخ", "الجغرافيا",
        "الفلسفة والمنطق", "علم النفس والاجتماع",
    ],
}

AGE_RANGE_ERROR = "يجب أن يتراوح عمر الطالب بين 5 و 20 سنة."


def schools_for_stage(stage: str) -> List[str]:
    if stage not in _STAGE_SCHOOLS:
        return []
    return _BASE_SCHOOLS + _STAGE_SCHOOLS[stage]


def classes_for_stage(stage: str) -> List[str]:
    return list(_STAGE_CLASSES.get(stage, []))


def subjects_for_stage(stage: str) -> List[str]:
    return list(_STAGE_SUBJECTS.get(stage, []))


def calculate_age(birth_date: date, today: Optional[date] = None) -> int:
    """Purpose: Compute age in whole years.
    Inputs/Outputs: Inputs are the birth date and an optional reference day; output is years.
    Side Effects / State: None.
    Dependencies: Used by validate_registration and build_profile.
    Failure Modes: None; a future birth date yields a negative age.
    If Removed: Age validation and stage suggestion cannot run.
    Testing Notes: The day before a birthday must still report the previous age.
    """
    # Subtract one year when this year's birthday is still ahead.
    today = today or date.today()
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def suggest_stage(age: Optional[int]) -> Optional[str]:
    """Map an age in the supported range to its school stage."""
    if age is None or age < MIN_AGE or age > MAX_AGE:
        return None
    if age <= 12:
        return STAGE_PRIMARY
    if age <= 15:
        return STAGE_PREPARATORY
    return STAGE_SECONDARY


def toggle_learning_difficulty(current: List[str], choice: str) -> List[str]:
    """Purpose: Apply one checkbox click to the learning-difficulty selection.
    Inputs/Outputs: Inputs are the current selection and the clicked value; output is
        the new selection.
    Side Effects / State: None; returns a new list.
    Dependencies: Uses NO_DIFFICULTY as the exclusive "none" value.
    Failure Modes: None.
    If Removed: "None" could coexist with real difficulties in stored profiles.
    Testing Notes: Selecting none clears others; removing the last one restores none.
    """
    # "None" is exclusive; an empty selection falls back to it.
    if choice == NO_DIFFICULTY:
        return [NO_DIFFICULTY]
    selected = [item for item in current if item != NO_DIFFICULTY]
    if choice in selected:
        selected = [item for item in selected if item != choice]
    else:
        selected.append(choice)
    return selected or [NO_DIFFICULTY]


def _parse_birth_date(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def validate_registration(form: RegistrationRequest, today: Optional[date] = None) -> Dict[str, str]:
    """Purpose: Validate every registration field and collect localized errors.
    Inputs/Outputs: Inputs are the submitted form and an optional reference day; output
        maps field names to error messages (empty when valid).
    Side Effects / State: None.
    Dependencies: Uses calculate_age and the catalog tables.
    Failure Modes: None; all problems are reported in the returned dict.
    If Removed: Incomplete profiles reach the prompt builder.
    Testing Notes: Missing name, out-of-range age, empty hobbies, and values outside the
        catalog tables each produce an entry.
    """
    # Mirror the three form steps: identity, schooling, interests.
    errors: Dict[str, str] = {}
    if not form.name.strip():
        errors["name"] = "الاسم الكامل مطلوب."
    if not form.birth_date:
        errors["birth_date"] = "تاريخ الميلاد مطلوب."
    else:
        birth = _parse_birth_date(form.birth_date)
        if birth is None:
            errors["birth_date"] = "تاريخ الميلاد غير صالح."
        else:
            age = calculate_age(birth, today)
            if age < MIN_AGE or age > MAX_AGE:
                errors["birth_date"] = AGE_RANGE_ERROR
    if not form.governorate:
        errors["governorate"] = "المحافظة مطلوبة."
    elif form.governorate not in GOVERNORATES:
        errors["governorate"] = "المحافظة غير معروفة."
    if form.gender not in GENDERS:
        errors["gender"] = "الجنس مطلوب."

    if not form.stage:
        errors["stage"] = "المرحلة التعليمية مطلوبة."
    elif form.stage not in STAGES:
        errors["stage"] = "المرحلة التعليمية غير معروفة."
    if not form.school_name:
        errors["school_name"] = "اسم المدرسة مطلوب."
    if not form.class_name:
        errors["class_name"] = "الصف مطلوب."
    if not form.semester:
        errors["semester"] = "الفصل الدراسي مطلوب."
    elif form.semester not in SEMESTERS:
        errors["semester"] = "الفصل الدراسي غير معروف."

    if not form.hobbies.strip():
        errors["hobbies"] = "الهوايات والاهتمامات مطلوبة."
    if not form.learning_difficulty:
        errors["learning_difficulty"] = "يرجى تحديد صعوبات التعلم."
    elif any(item not in LEARNING_DIFFICULTIES for item in form.learning_difficulty):
        errors["learning_difficulty"] = "صعوبة التعلم المختارة غير معروفة."
    return errors


def build_profile(
    form: RegistrationRequest,
    traits: Optional[PersonalityTraits] = None,
    today: Optional[date] = None,
) -> UserProfile:
    """Purpose: Turn a validated registration form into a UserProfile.
    Inputs/Outputs: Inputs are the form, optional assessment traits, and a reference day;
        output is the profile with its computed age.
    Side Effects / State: None.
    Dependencies: Uses validate_registration and calculate_age.
    Failure Modes: Raises ValidationError carrying the field error dict.
    If Removed: Registration cannot produce a profile for login.
    Testing Notes: A valid form yields the computed age and the given traits.
    """
    # Reject the whole form if any field fails.
    errors = validate_registration(form, today)
    if errors:
        raise ValidationError("registration form is invalid", errors)
    birth = _parse_birth_date(form.birth_date)
    return UserProfile(
        name=form.name.strip(),
        birth_date=form.birth_date,
        governorate=form.governorate,
        stage=form.stage,
        school_name=form.school_name,
        class_name=form.class_name,
        hobbies=form.hobbies.strip(),
        age=calculate_age(birth, today),
        gender=form.gender,
        semester=form.semester,
        learning_difficulty=list(form.learning_difficulty),
        personality_traits=traits or form.personality_traits,
    )


def demo_profile() -> UserProfile:
    """Fixed profile used by the demo login button."""
    return UserProfile(
        name="مستخدم تجريبي",
        birth_date="2007-01-01",
        governorate="القاهرة",
        stage=STAGE_SECONDARY,
        school_name="مدرسة السلام الثانوية",
        class_name="الصف الثالث",
        hobbies="القراءة والذكاء الاصطناعي",
        age=17,
        gender="Male",
        semester=SEMESTERS[0],
        learning_difficulty=[NO_DIFFICULTY],
    )
