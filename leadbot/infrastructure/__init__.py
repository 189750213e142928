# Infrastructure Layer
# ====================
# Contains all external service integrations:
# - whatsapp/: Selenium-based WhatsApp Web automation and the async chat session
# - leads/: Google Sheets and Excel/CSV lead sources
# - persistence/: append-only message and catalog logs
# - config/: Environment, config.json and settings management
#
# This layer can be replaced entirely without affecting domain/application layers.
