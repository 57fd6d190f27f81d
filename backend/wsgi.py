from counterpos import create_app

app = create_app()
