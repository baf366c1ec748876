from retainr import create_app

app = create_app()
