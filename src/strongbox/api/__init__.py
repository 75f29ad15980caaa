# Vault API - FastAPI backend for the Strongbox front end
