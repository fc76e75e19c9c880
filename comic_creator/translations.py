"""User-facing strings per output language (pl, en)."""

UI_TRANSLATIONS = {
    "pl": {
        "page": "Strona",
        "special_edition": "Wydanie Specjalne",
        "script_art": "Scenariusz i Rysunki",
        "author_unknown": "Autor Nieznany",
        "title_placeholder": "TYTUŁ KOMIKSU",
        "error_script": "Nie udało się wygenerować scenariusza. Sprawdź ustawienia API Key.",
        "error_extend": "Nie udało się rozszerzyć historii.",
        "error_save": "Błąd zapisu do bazy.",
        "error_pdf": "Błąd generowania PDF.",
        "error_zip": "Błąd tworzenia archiwum ZIP.",
        "error_marketing": "Błąd generowania materiałów promocyjnych.",
        "error_busy": "Generowanie jest już w toku.",
    },
    "en": {
        "page": "Page",
        "special_edition": "Special Edition",
        "script_art": "Script & Art",
        "author_unknown": "Unknown Author",
        "title_placeholder": "COMIC TITLE",
        "error_script": "Failed to generate script. Check API Key settings.",
        "error_extend": "Failed to extend story.",
        "error_save": "Failed to save to the database.",
        "error_pdf": "Failed to generate PDF.",
        "error_zip": "Failed to create ZIP archive.",
        "error_marketing": "Failed to generate marketing assets.",
        "error_busy": "A generation is already in progress.",
    },
}


def t(language: str, key: str) -> str:
    """Look up a string, falling back to English."""
    table = UI_TRANSLATIONS.get(language, UI_TRANSLATIONS["en"])
    return table.get(key, UI_TRANSLATIONS["en"][key])
