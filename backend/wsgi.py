from racktrack import create_app

app = create_app()
