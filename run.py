from newsletter import create_app

app = create_app()

if __name__ == '__main__':
    # '0.0.0.0' makes it reachable from the network
    app.run(host='0.0.0.0', port=5000)
