from nexfan import create_app, db
import os

app = create_app()

@app.shell_context_processor
def make_shell_context():
    # Importar models aqui para evitar importação circular
    from nexfan.models import User, CreatorProfile, Plan, Post, Subscription, Payment

    return {'db': db, 'User': User, 'CreatorProfile': CreatorProfile, 'Plan': Plan,
            'Post': Post, 'Subscription': Subscription, 'Payment': Payment}

if __name__ == '__main__':
    with app.app_context():
        # Mostrar configuração do banco
        print(f"Banco de dados: {app.config['SQLALCHEMY_DATABASE_URI']}")

        # Criar tabelas
        db.create_all()
        print("Banco de dados criado/atualizado")

    debug = os.environ.get('FLASK_DEBUG', 'False').lower() in ['true', '1', 'on']
    print(f"NexFan rodando em http://localhost:5000 (debug={debug})")
    app.run(debug=debug, host='0.0.0.0', port=5000)
