"""Run the EPG proxy with uvicorn: python -m epg_proxy"""
import uvicorn

from config.settings import settings


def main():
    uvicorn.run("epg_proxy.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
