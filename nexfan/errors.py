"""
Erros de domínio da plataforma e conversão para respostas JSON
"""
import logging
from flask import jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class NexFanError(Exception):
    """Base de todos os erros tratados pela API"""
    status_code = 500
    message = 'Erro interno'

    def __init__(self, message=None, details=None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details

    def to_dict(self):
        payload = {'error': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class Unauthorized(NexFanError):
    status_code = 401
    message = 'Não autorizado'


class Forbidden(NexFanError):
    status_code = 403
    message = 'Acesso negado'


class NotFound(NexFanError):
    status_code = 404
    message = 'Não encontrado'


class Conflict(NexFanError):
    status_code = 409
    message = 'Registro já existe'


class InvalidInput(NexFanError):
    status_code = 400
    message = 'Dados inválidos'


class UpstreamProviderError(NexFanError):
    """Falha no gateway de pagamento; a mensagem nunca expõe detalhes do provedor"""
    status_code = 502
    message = 'Erro ao comunicar com o provedor de pagamento'


def register_error_handlers(app):
    """Registra os handlers que transformam exceções em JSON"""

    @app.errorhandler(NexFanError)
    def handle_nexfan_error(error):
        if error.status_code >= 500:
            logger.error(f"{type(error).__name__}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'error': error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        logger.exception(f"Erro não tratado: {error}")
        return jsonify({'error': 'Erro interno do servidor'}), 500
