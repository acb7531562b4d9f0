from fastapi import Request

from roundengine.core.container import Engine


def get_engine(request: Request) -> Engine:
    return request.app.state.engine
