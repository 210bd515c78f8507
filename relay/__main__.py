import uvicorn

from relay.vars import HOST, LOG_LEVEL, PORT

if __name__ == "__main__":
    uvicorn.run("relay.server:app", host=HOST, port=PORT, log_level=LOG_LEVEL)
