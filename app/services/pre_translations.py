"""Human-authored translations for the standard seed data created at signup.

Used by ``TranslationService.insert_translations_directly`` so that seeding a
new restaurant does not cost any model call.
"""

from __future__ import annotations

from typing import Dict, Optional

PRE_TRANSLATIONS: Dict[str, Dict[str, str]] = {
    # Categories
    "Main Dishes": {"en": "Main Dishes", "ar": "الأطباق الرئيسية", "ku": "خواردنی سەرەکی", "fr": "Plats principaux"},
    "Delicious main course options": {
        "en": "Delicious main course options",
        "ar": "خيارات الأطباق الرئيسية اللذيذة",
        "ku": "هەڵبژاردنی خواردنی سەرەکی بەتام",
        "fr": "Options de plats principaux délicieux",
    },
    "Sides & Appetizers": {
        "en": "Sides & Appetizers",
        "ar": "المقبلات والأطباق الجانبية",
        "ku": "خواردنی لاوەکی و پێشخواردن",
        "fr": "Accompagnements et apéritifs",
    },
    # Add-on groups
    "Extra Toppings (Sample)": {
        "en": "Extra Toppings (Sample)",
        "ar": "إضافات إضافية (عينة)",
        "ku": "زیادە (نموونە)",
        "fr": "Garnitures supplémentaires (Échantillon)",
    },
    "Customization Options (Sample)": {
        "en": "Customization Options (Sample)",
        "ar": "خيارات التخصيص (عينة)",
        "ku": "هەڵبژاردنی تایبەت (نموونە)",
        "fr": "Options de personnalisation (Échantillon)",
    },
    # Add-ons
    "Extra Cheese": {"en": "Extra Cheese", "ar": "جبن إضافي", "ku": "پنیری زیادە", "fr": "Fromage supplémentaire"},
    "Extra Sauce": {"en": "Extra Sauce", "ar": "صلصة إضافية", "ku": "سۆسی زیادە", "fr": "Sauce supplémentaire"},
    "Extra Spicy": {"en": "Extra Spicy", "ar": "حار جداً", "ku": "زۆر تون", "fr": "Très épicé"},
    "No Onions": {"en": "No Onions", "ar": "بدون بصل", "ku": "بەبێ پیاز", "fr": "Sans oignons"},
    "Well Done": {"en": "Well Done", "ar": "مطهو جيداً", "ku": "بە باشی", "fr": "Bien cuit"},
    # Variation groups and variations
    "Size": {"en": "Size", "ar": "الحجم", "ku": "قەبارە", "fr": "Taille"},
    "Spice Level": {"en": "Spice Level", "ar": "مستوى التوابل", "ku": "ئاستی تون", "fr": "Niveau d'épices"},
    "Small": {"en": "Small", "ar": "صغير", "ku": "بچووک", "fr": "Petit"},
    "Medium": {"en": "Medium", "ar": "متوسط", "ku": "ناوەند", "fr": "Moyen"},
    "Large": {"en": "Large", "ar": "كبير", "ku": "گەورە", "fr": "Grand"},
    "Mild": {"en": "Mild", "ar": "خفيف", "ku": "کەم", "fr": "Doux"},
    "Hot": {"en": "Hot", "ar": "حار", "ku": "تون", "fr": "Épicé"},
    "Extra Hot": {"en": "Extra Hot", "ar": "حار جداً", "ku": "زۆر تون", "fr": "Très épicé"},
    # Food items
    "Sample Burger": {"en": "Sample Burger", "ar": "برجر عينة", "ku": "بێرگەری نموونە", "fr": "Burger échantillon"},
    "A delicious sample burger": {
        "en": "A delicious sample burger",
        "ar": "برجر عينة لذيذ",
        "ku": "بێرگەری نموونەی بەتام",
        "fr": "Un délicieux burger échantillon",
    },
    "Sample Pizza": {"en": "Sample Pizza", "ar": "بيتزا عينة", "ku": "پیتزای نموونە", "fr": "Pizza échantillon"},
    "Sample Fries": {"en": "Sample Fries", "ar": "بطاطا مقلية عينة", "ku": "فرای نموونە", "fr": "Frites échantillon"},
    "Garlic Bread": {"en": "Garlic Bread", "ar": "خبز بالثوم", "ku": "نانێکی سیر", "fr": "Pain à l'ail"},
    # Buffets and combo meals
    "Weekend Special Buffet": {
        "en": "Weekend Special Buffet",
        "ar": "بوفيه نهاية الأسبوع الخاص",
        "ku": "بوفێی تایبەتی کۆتایی هەفتە",
        "fr": "Buffet spécial week-end",
    },
    "Classic Burger Combo": {
        "en": "Classic Burger Combo",
        "ar": "كومبو البرجر الكلاسيكي",
        "ku": "کۆمبۆی بێرگەری کلاسیک",
        "fr": "Combo burger classique",
    },
    # Branches and menus
    "Main Branch": {"en": "Main Branch", "ar": "الفرع الرئيسي", "ku": "لقی سەرەکی", "fr": "Branche principale"},
    "All Day": {"en": "All Day", "ar": "طوال اليوم", "ku": "هەموو ڕۆژ", "fr": "Toute la journée"},
    "Breakfast": {"en": "Breakfast", "ar": "الإفطار", "ku": "نانی بەیانی", "fr": "Petit-déjeuner"},
    "Lunch": {"en": "Lunch", "ar": "الغداء", "ku": "نانی نیوەڕۆ", "fr": "Déjeuner"},
    "Dinner": {"en": "Dinner", "ar": "العشاء", "ku": "نانی ئێوارە", "fr": "Dîner"},
}


def get_pre_translation(text: str, language_code: str) -> Optional[str]:
    return PRE_TRANSLATIONS.get(text, {}).get(language_code)


__all__ = ["PRE_TRANSLATIONS", "get_pre_translation"]
