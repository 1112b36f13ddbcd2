"""
Script para criar (ou promover) um usuário administrador
Execute: python create_admin.py --email admin@example.com --name "Admin"
"""
import argparse
import getpass

from nexfan import create_app, db
from nexfan.models import User, Role


def create_admin(email, name=None, password=None):
    app = create_app()

    with app.app_context():
        db.create_all()

        admin = User.query.filter_by(email=email.strip().lower()).first()

        if admin:
            print(f"⚠️  Usuário {admin.email} já existe, promovendo para ADMIN")
            admin.role = Role.ADMIN
            admin.is_active = True
            if password:
                print("🔐 Senha atualizada")
                admin.set_password(password)
        else:
            if not password:
                raise SystemExit("❌ Informe uma senha para criar o administrador")

            admin = User(
                name=name or 'Admin',
                email=email.strip().lower(),
                role=Role.ADMIN
            )
            admin.set_password(password)
            db.session.add(admin)
            print("✅ Admin criado com sucesso!")

        db.session.commit()
        print(f"\n📧 Email: {admin.email}")


def main():
    parser = argparse.ArgumentParser(description='Criar ou promover usuário administrador')
    parser.add_argument('--email', required=True)
    parser.add_argument('--name')
    parser.add_argument('--password', help='Se omitida, será solicitada no terminal')
    parser.add_argument('--keep-password', action='store_true',
                        help='Não alterar a senha de um usuário existente')
    args = parser.parse_args()

    password = args.password
    if password is None and not args.keep_password:
        password = getpass.getpass('Senha: ')

    create_admin(args.email, args.name, password)


if __name__ == '__main__':
    main()
