import json

from leadbot.infrastructure.config.settings import DEFAULT_WELCOME_TEMPLATE, BusinessConfig

from setup_business import build_config, setup_business, update_env_file


def scripted(answers):
    replies = iter(answers)
    return lambda prompt: next(replies)


DETAILS = [
    "Acme Baths",
    "Acme",
    "Bathroom Solutions",
    "basin collections",
    "Acme-Catalog.pdf",
    "Mansarovar Garden, New Delhi",
    "https://maps.example/acme",
    "9999999999",
    "2025-07-15",
]


def test_wizard_with_defaults_writes_loadable_config(tmp_path, capsys):
    (tmp_path / ".env").write_text('GOOGLE_API_KEY=abc\nPDF_PATH="old.pdf"\nPORT=3000\n', encoding="utf-8")

    config_path = setup_business(tmp_path, ask=scripted(DETAILS + ["y", "y", "y"]))

    data = json.loads(config_path.read_text(encoding="utf-8"))
    config = BusinessConfig.from_dict(data)
    assert config.business.name == "Acme Baths"
    assert config.business.catalog_name == "Acme-Catalog.pdf"
    assert config.messages.welcome_template == DEFAULT_WELCOME_TEMPLATE
    assert "pdf" in config.messages.catalog_keywords
    assert config.notification_phone == "9999999999"
    assert config.filter_start_date == "2025-07-15"
    assert config.branding.dashboard_title == "Acme Baths WhatsApp Bot - Dashboard"
    assert config.branding.logo_text == "Acme Bot"

    env = (tmp_path / ".env").read_text(encoding="utf-8")
    assert env == 'GOOGLE_API_KEY=abc\nPDF_PATH="Acme-Catalog.pdf"\nPORT=3000\n'
    assert "Configuration saved successfully" in capsys.readouterr().out


def test_wizard_custom_templates_keywords_and_colors(tmp_path):
    answers = DETAILS + [
        "n",
        "Hi {name}, welcome to {businessName}!",
        "Our {productType}",
        "Find us at {location}",
        "n",
        "PDF, Rates ,, menu",
        "n",
        "#111111",
        "",
        "#333333",
    ]

    config_path = setup_business(tmp_path, ask=scripted(answers))

    data = json.loads(config_path.read_text(encoding="utf-8"))
    assert data["messages"]["welcomeTemplate"] == "Hi {name}, welcome to {businessName}!"
    assert data["messages"]["catalogKeywords"] == ["pdf", "rates", "menu"]
    assert data["branding"]["primaryColor"] == "#111111"
    assert data["branding"]["secondaryColor"] == "#128C7E"
    assert data["branding"]["accentColor"] == "#333333"


def test_build_config_fills_defaults():
    config = build_config({"business_name": "Acme Baths"})

    assert config["business"]["shortName"] == "Acme Baths"
    assert config["business"]["catalogName"] == "catalog.pdf"
    assert config["branding"]["logoText"] == "Acme Baths Bot"
    assert config["messages"]["welcomeTemplate"] == DEFAULT_WELCOME_TEMPLATE


def test_update_env_file_appends_when_missing(tmp_path):
    env_path = tmp_path / ".env"
    env_path.write_text("GOOGLE_API_KEY=abc", encoding="utf-8")

    update_env_file(env_path, "catalog.pdf")

    assert env_path.read_text(encoding="utf-8") == 'GOOGLE_API_KEY=abc\nPDF_PATH="catalog.pdf"\n'


def test_update_env_file_creates_file(tmp_path):
    env_path = tmp_path / ".env"

    update_env_file(env_path, "C:\\bots\\catalog.pdf")

    assert env_path.read_text(encoding="utf-8") == 'PDF_PATH="C:\\bots\\catalog.pdf"\n'
