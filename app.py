from flask import Flask, request
from flask_login import LoginManager, current_user
from dotenv import load_dotenv
from sqlalchemy.exc import OperationalError

# Carrega variaveis de ambiente de .env (desenvolvimento local)
load_dotenv()

from config import Config
from models.extensions import db, init_db
from models.user_model import User

from routes.auth_routes import auth_bp
from routes.checkout_routes import checkout_bp
from routes.subscription_routes import subscription_bp
from routes.webhook_routes import webhooks_bp

from services.permissions import (
    CSRF_EXEMPT_ENDPOINTS,
    is_json_request,
    json_error,
    validate_csrf,
)

app = Flask(__name__)
app.config.from_object(Config)

# DB
init_db(app)

# Login manager
login_manager = LoginManager()
login_manager.init_app(app)


@login_manager.user_loader
def load_user(user_id):
    if not user_id:
        return None

    try:
        return db.session.get(User, int(user_id))
    except OperationalError:
        # Conexao SSL instavel em pools remotos: tenta limpar e reabrir.
        db.session.rollback()
        db.session.remove()
        db.engine.dispose()
        try:
            return db.session.get(User, int(user_id))
        except OperationalError:
            db.session.rollback()
            return None


@login_manager.unauthorized_handler
def unauthorized():
    return json_error("Não autorizado. Faça login para continuar.", 401, "UNAUTHORIZED")


# Blueprints
app.register_blueprint(auth_bp)
app.register_blueprint(checkout_bp)
app.register_blueprint(subscription_bp)
app.register_blueprint(webhooks_bp)


@app.before_request
def enforce_csrf():
    if request.method not in {"POST", "PUT", "PATCH", "DELETE"}:
        return
    endpoint = request.endpoint or ""
    if endpoint in CSRF_EXEMPT_ENDPOINTS:
        return
    # Sem sessao autenticada nao ha cookie a proteger; a rota responde 401
    if not current_user.is_authenticated:
        return
    if validate_csrf():
        return
    return json_error("Token CSRF inválido.", 403, "CSRF_FAILED")


@app.errorhandler(404)
def not_found(_err):
    if is_json_request():
        return json_error("Recurso não encontrado", 404, "NOT_FOUND")
    return "Not Found", 404


@app.errorhandler(405)
def method_not_allowed(_err):
    if is_json_request():
        return json_error("Método não permitido", 405, "METHOD_NOT_ALLOWED")
    return "Method Not Allowed", 405


@app.errorhandler(500)
def internal_error(_err):
    db.session.rollback()
    if is_json_request():
        return json_error("Erro interno. Tente novamente.", 500, "INTERNAL_ERROR")
    return "Internal Server Error", 500


@app.get("/healthz")
def healthz():
    return "ok", 200


if __name__ == "__main__":
    app.run(debug=True, use_reloader=False)
