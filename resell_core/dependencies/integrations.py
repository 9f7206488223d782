from fastapi import Request


def get_gateway(request: Request):
    return request.app.state.gateway


def get_provider(request: Request):
    return request.app.state.provider


def get_notifier(request: Request):
    return request.app.state.notifier
