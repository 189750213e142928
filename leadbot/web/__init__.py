# Presentation Layer
# ==================
# - app.py: FastAPI dashboard and JSON control surface
