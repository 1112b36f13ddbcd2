"""
Polling de confirmação de pagamento após o redirect do checkout

Chama o endpoint de verificação até a assinatura ficar ACTIVE ou até a
décima tentativa. A espera após a tentativa N é N unidades (1, 2, 3, ...).
Depois de esgotar as tentativas o resultado é otimista: a tela mostra
sucesso e assume que a confirmação chega depois.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

import requests

logger = logging.getLogger(__name__)

ACTIVE = 'ACTIVE'


@dataclass
class PollResult:
    status: Optional[str]
    attempts: int
    confirmed: bool
    cancelled: bool
    waited: float

    @property
    def outcome(self):
        if self.cancelled:
            return 'cancelled'
        if self.confirmed:
            return 'confirmed'
        return 'assumed_success'


class ConfirmationPoller:
    """
    Loop de tentativas serializado e cancelável

    Args:
        verify: Função que consulta o status atual da assinatura; exceções
            contam como tentativa falha
        max_attempts: Número máximo de tentativas
        delay_unit: Duração de uma unidade de espera, em segundos
        wait: Função de espera (segundos) -> bool indicando cancelamento;
            por padrão usa o evento interno de cancelamento
    """

    def __init__(self, verify: Callable[[], Optional[str]], max_attempts: int = 10,
                 delay_unit: float = 1.0, wait: Optional[Callable[[float], bool]] = None):
        self.verify = verify
        self.max_attempts = max_attempts
        self.delay_unit = delay_unit
        self._cancelled = threading.Event()
        self._wait = wait or self._cancelled.wait

    @classmethod
    def for_subscription(cls, base_url: str, subscription_id, session: Optional[requests.Session] = None,
                         max_attempts: int = 10, delay_unit: float = 1.0):
        """Poller que consulta o endpoint de verificação da API via HTTP"""
        return cls(VerificationClient(base_url, subscription_id, session=session),
                   max_attempts=max_attempts, delay_unit=delay_unit)

    @property
    def cancelled(self):
        return self._cancelled.is_set()

    def cancel(self):
        """Interrompe o loop; nenhuma tentativa roda depois disso"""
        self._cancelled.set()

    def run(self) -> PollResult:
        status = None
        waited = 0.0
        attempt = 0

        for attempt in range(1, self.max_attempts + 1):
            if self.cancelled:
                return PollResult(status, attempt - 1, False, True, waited)

            try:
                status = self.verify()
                logger.info(f"Tentativa {attempt}: status da assinatura {status}")
            except Exception as e:
                logger.warning(f"Erro ao verificar assinatura (tentativa {attempt}): {e}")
                status = None

            # cancel() durante a consulta: o resultado é descartado
            if self.cancelled:
                return PollResult(status, attempt, False, True, waited)

            if status == ACTIVE:
                return PollResult(status, attempt, True, False, waited)

            if attempt == self.max_attempts:
                break

            delay = attempt * self.delay_unit
            if self._wait(delay) or self.cancelled:
                return PollResult(status, attempt, False, True, waited)
            waited += delay

        logger.info(f"Após {attempt} tentativas, status ainda: {status}")
        return PollResult(status, attempt, False, False, waited)


class VerificationClient:
    """Chama POST /api/subscribe/<id>/verify e devolve o status"""

    def __init__(self, base_url: str, subscription_id, session: Optional[requests.Session] = None,
                 timeout: float = 10):
        self.url = f"{base_url.rstrip('/')}/api/subscribe/{subscription_id}/verify"
        self.session = session or requests.Session()
        self.timeout = timeout

    def __call__(self) -> Optional[str]:
        response = self.session.post(self.url, timeout=self.timeout)
        response.raise_for_status()
        return response.json().get('status')
