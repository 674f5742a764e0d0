import uvicorn

from linguamarket.core.registrar import register_app

app = register_app()


if __name__ == '__main__':
    uvicorn.run(app='linguamarket.main:app', host='127.0.0.1', port=8000)
