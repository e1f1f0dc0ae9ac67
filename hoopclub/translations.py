"""Notification texts for the supported interface languages."""
from __future__ import annotations

from typing import Dict

LANGUAGES = ("en", "tr")

_ENTITIES = {
    "en": {
        "branch": "Branch",
        "group": "Group",
        "student": "Student",
        "trainer": "Trainer",
        "attendance": "Attendance",
        "progress": "Progress record",
        "match": "Match",
        "payment": "Payment",
        "club": "Club",
    },
    "tr": {
        "branch": "Şube",
        "group": "Grup",
        "student": "Öğrenci",
        "trainer": "Antrenör",
        "attendance": "Yoklama",
        "progress": "Gelişim kaydı",
        "match": "Maç",
        "payment": "Ödeme",
        "club": "Kulüp",
    },
}

_ACTIONS = {
    "en": {
        "add": "{entity} added successfully",
        "update": "{entity} updated successfully",
        "delete": "{entity} deleted successfully",
        "save": "{entity} saved successfully",
    },
    "tr": {
        "add": "{entity} başarıyla eklendi",
        "update": "{entity} başarıyla güncellendi",
        "delete": "{entity} başarıyla silindi",
        "save": "{entity} başarıyla kaydedildi",
    },
}

_MESSAGES: Dict[str, Dict[str, str]] = {
    "en": {
        "login": "Signed in",
        "logout": "Signed out",
        "setup": "Club setup completed!",
        "settings": "Settings saved",
    },
    "tr": {
        "login": "Giriş yapıldı",
        "logout": "Çıkış yapıldı",
        "setup": "Kulüp kurulumu tamamlandı!",
        "settings": "Ayarlar kaydedildi",
    },
}


def success(language: str, entity: str, action: str) -> str:
    """Toast text such as ``"Branch added successfully"``."""
    language = language if language in LANGUAGES else "en"
    label = _ENTITIES[language].get(entity, entity.capitalize())
    return _ACTIONS[language][action].format(entity=label)


def message(language: str, key: str) -> str:
    language = language if language in LANGUAGES else "en"
    return _MESSAGES[language].get(key, _MESSAGES["en"].get(key, key))
