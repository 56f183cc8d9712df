"""
Frontend Application Server.

Этот модуль отвечает исключительно за отдачу страницы и статики (HTML, JS).
Состояние холста браузер получает напрямую из Canvas API.
"""

import os

from dotenv import load_dotenv
from flask import Flask, render_template


# Интервал опроса API ограничен 5..60 секундами.
MIN_POLL_SECONDS = 5
MAX_POLL_SECONDS = 60


def load_poll_interval() -> int:
    raw = os.environ.get("POLL_INTERVAL_SECONDS", "30")
    try:
        seconds = int(raw)
    except ValueError:
        seconds = 30

    return max(MIN_POLL_SECONDS, min(MAX_POLL_SECONDS, seconds))


def create_app() -> Flask:
    """
    Создаёт Flask приложение.

    Flask автоматически ищет шаблоны в папке 'templates'
    и статические файлы (js) в папке 'static'.
    """

    load_dotenv()

    app = Flask(__name__)
    app.config["CANVAS_API_URL"] = os.environ.get(
        "CANVAS_API_URL", "http://localhost:8000").rstrip("/")
    app.config["POLL_INTERVAL_SECONDS"] = load_poll_interval()

    @app.route("/")
    def index() -> str:
        """
        Главная страница (Single Page Application Entry Point).

        Returns:
            str: Отрендеренный HTML шаблон 'index.html'.
        """
        return render_template(
            "index.html",
            api_url=app.config["CANVAS_API_URL"],
            poll_interval=app.config["POLL_INTERVAL_SECONDS"],
        )

    return app


app = create_app()


def main() -> None:
    # Запуск сервера.
    print("Running at http://127.0.0.1:5000")
    app.run(debug=False, port=5000, host='0.0.0.0')


if __name__ == "__main__":
    main()
