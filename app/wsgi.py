from app.pccportal import create_app

app = create_app()
