"""
Envio das mensagens de conta (redefinição de senha)
Sem provedor de email configurado, a mensagem vai para o log do servidor.
"""
import logging

logger = logging.getLogger(__name__)


class ConsoleMailer:
    """Mailer de console: registra a mensagem no log em vez de enviá-la"""

    def send_email(self, to_email, subject, body):
        logger.info(f"[EMAIL] Para: {to_email} | Assunto: {subject}\n{body}")
        return True

    def send_password_reset(self, to_email, token, link):
        body = (
            "Recebemos um pedido para redefinir a senha da sua conta na agenda do laboratório.\n"
            f"Acesse o link abaixo para escolher uma nova senha:\n{link}\n\n"
            f"Código de redefinição: {token}\n"
            "Se você não fez este pedido, ignore esta mensagem."
        )
        return self.send_email(to_email, "Redefinição de senha", body)
