from __future__ import annotations

from telegram import KeyboardButton, ReplyKeyboardMarkup

TOOLS_BUTTON = "🛠 Tools"

BUTTON_COMMANDS = {
    TOOLS_BUTTON: "tools",
}

MENU_PROMPT = "Selecione uma opção do menu:"

WELCOME_TEXT = (
    "⚡️ <b>CARD GEN PRO</b>\n\n"
    "<i>Laboratório de cartões de teste e consultas. "
    "Os números gerados são sintéticos e servem apenas para testes.</i>"
)

TOOLS_TEXT = """🛠 Ferramentas disponíveis:

Geração e Consultas:
• /gen BIN|MM|YYYY|CVV - Gera cartões 💳
• /bin BIN - Consulta BIN 🔍
• /ip <IP> - Consulta IP e risco 🌐
• /cedula <número> - Consulta SRI por cédula 🪪
• /placa <número> - Consulta dados de veículo 🚗

Email Temporário:
• /mail - Gera email temporário 📧
• /check - Verifica mensagens do email 📨

Favoritos:
• /favoritos - Seus BINs favoritos ⭐️
• /agregarbin BIN mês ano cvv - Adiciona BIN aos favoritos ➕
• /eliminarbin <índice> - Remove BIN dos favoritos 🗑

Utilidades:
• /historial - Seu histórico 📝
• /clear - Limpar chat 🧹

Todos os comandos funcionam com / ou ."""

HELP_TEXT = """👋 Olá! Bem-vindo ao CARD GEN PRO

Todos os comandos funcionam com / ou . (por exemplo, /gen ou .gen)

🔧 Geração de Cartões
gen BIN|MM|YYYY|CVV
► Gera 10 cartões automaticamente
Exemplo: gen 477349002646|05|2027|123

🔍 Consultas Inteligentes
bin BIN
► Informações detalhadas de um BIN
Exemplo: bin 431940

ip <endereço IP>
► Consulta informações e risco de um IP
Exemplo: ip 8.8.8.8

cedula <número de cédula>
► Consulta dados SRI por cédula
Exemplo: cedula 17xxxxxxxx

placa <número de placa>
► Consulta dados de veículo por placa
Exemplo: placa PDF9627

📧 Email Temporário
mail
► Gera um email temporário

check
► Verifica as mensagens recebidas

⭐️ Favoritos
favoritos
► Lista seus BINs salvos

agregarbin BIN [mês] [ano] [cvv]
► Salva um BIN para usar depois

eliminarbin <índice>
► Remove um BIN da sua lista

📋 Utilidades
historial
► Revise suas consultas anteriores

clear
► Limpa o chat

ajuda
► Mostra este guia de comandos"""


def build_main_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        [[KeyboardButton(TOOLS_BUTTON)]],
        resize_keyboard=True,
        one_time_keyboard=True,
    )
