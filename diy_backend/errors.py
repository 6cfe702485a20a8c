# diy_backend/errors.py
"""
Erreurs métier. Les routes ne les attrapent pas : les handlers enregistrés
dans main.create_app les traduisent en enveloppe {success: false, error}.
"""


class DiyError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DiyError):
    """Requête mal formée ou incohérente."""
    status_code = 400


class NotFoundError(DiyError):
    status_code = 404


class ParseError(DiyError):
    """JSON d'action illisible ou de forme inattendue."""
    status_code = 422


class GenerationError(ParseError):
    """Réponse du LLM inexploitable après toutes les tentatives."""
    status_code = 502


class UpstreamError(DiyError):
    """Échec d'appel OpenAI ou base de données."""
    status_code = 502

    def __init__(self, message: str, timeout: bool = False):
        super().__init__(message)
        if timeout:
            self.status_code = 504
